"""AWS resources and data sources; importing this package registers them."""

from . import appstream as appstream
from . import costexplorer as costexplorer
from . import datapipeline as datapipeline
from . import directoryservice as directoryservice
from . import route53 as route53
