"""cloudspec - declarative AWS resources converged from HCL blueprints."""

from .blueprints import Blueprint as Blueprint
from .context import Context as Context
from .errors import CloudSpecError as CloudSpecError
from .errors import FatalStateError as FatalStateError
from .errors import NotFoundError as NotFoundError
from .errors import ResourceError as ResourceError
from .errors import TransientError as TransientError
from .errors import UnexpectedStateError as UnexpectedStateError
from .errors import WaitCancelledError as WaitCancelledError
from .errors import WaitError as WaitError
from .errors import WaitTimeoutError as WaitTimeoutError
from .projects import Project as Project
from .resource import DataSource as DataSource
from .resource import Resource as Resource
from .resource import lookup as lookup
from .spec import Specification as Specification
from .spec import data_source as data_source
from .spec import spec as spec
from .specop import Absent as Absent
from .specop import Ensure as Ensure
from .specop import Present as Present
from .specop import SpecOp as SpecOp
from .waiter import NotFound as NotFound
from .waiter import PollResult as PollResult
from .waiter import WaitSpec as WaitSpec
from .waiter import wait as wait
from .workspace import Workspace as Workspace

from . import resources as resources  # noqa: E402  registers the resource blocks
