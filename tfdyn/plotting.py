import os

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np


class Plotter:
    """
    Diagnostic plots for one branch fit.

    Attributes:
        branch (str): Branch name, used in titles and file names.
        out_dir (str): Directory where plots are saved.
    """

    def __init__(self, branch, out_dir):
        self.branch = branch
        self.out_dir = out_dir
        os.makedirs(self.out_dir, exist_ok=True)

    def _save_fig(self, fig, filename: str, dpi: int = 300):
        """
        Saves and closes the given matplotlib figure.
        """
        path = os.path.join(self.out_dir, filename)
        fig.savefig(path, dpi=dpi)
        plt.close(fig)
        return path

    def plot_convergence(self, history):
        """
        Objective value per iteration; the rejected (early-stop) iteration is marked.

        :param history: DataFrame with ``iteration``, ``value``, ``accepted`` columns.
        :return: path of the saved figure
        """
        acc = history[history["accepted"]]
        rej = history[~history["accepted"]]
        fig, ax = plt.subplots(figsize=(8, 5))
        ax.plot(acc["iteration"], acc["value"], marker="o", color="tab:blue", label="accepted")
        if not rej.empty:
            ax.scatter(rej["iteration"], rej["value"], marker="x", color="tab:red", s=60, label="no improvement")
        ax.set_title(self.branch)
        ax.set_xlabel("Iteration")
        ax.set_ylabel("Objective")
        ax.grid(True, alpha=0.2)
        ax.legend(loc="best")
        plt.tight_layout()
        return self._save_fig(fig, f"{self.branch}_convergence.png")

    def plot_learning_rates(self, history):
        """
        Learning rate chosen by the line search per iteration (log scale).

        :param history: DataFrame with ``iteration`` and ``learning_rate`` columns.
        :return: path of the saved figure
        """
        h = history.dropna(subset=["learning_rate"])
        fig, ax = plt.subplots(figsize=(8, 5))
        ax.plot(h["iteration"], h["learning_rate"], marker="o", color="tab:green")
        if len(h) and np.all(h["learning_rate"] > 0):
            ax.set_yscale("log")
        ax.set_title(self.branch)
        ax.set_xlabel("Iteration")
        ax.set_ylabel("Learning rate")
        ax.grid(True, alpha=0.2)
        plt.tight_layout()
        return self._save_fig(fig, f"{self.branch}_learning_rate.png")
