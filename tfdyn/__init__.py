"""
tfdyn: gradient-ascent refinement of TF-TG nonlinear dynamics models over pseudotime.
"""

__version__ = "0.1.0"

from tfdyn.ascent import AscentResult, GradientAscent, IterationEvent
from tfdyn.errors import BoundsInfeasible, DegenerateSeriesError, MissingParameterKey, TFDynError, WorkerFailure
from tfdyn.gradient import NumericGradient
from tfdyn.linesearch import bounded_step, line_search
from tfdyn.objfn import Context, ObjectiveEvaluator
from tfdyn.params import Bounds, ParameterRegistry
