from .common import *  # noqa
from .warehouse import *  # noqa
from .wms.scan_sessions import *  # noqa

# Platform event-bus table (transactional outbox)
from app.events.outbox import *  # noqa
