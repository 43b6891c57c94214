"""SIP messages, transactions and the user agent built on them."""

from .auth import *
from .call import *
from .client import *
from .codec import *
from .headers import *
from .identity import *
from .messages import *
from .transaction import *
from .transport import *
