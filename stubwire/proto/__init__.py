"""Runtime support: descriptors, codec, registry, stubs and dispatch."""

from .codec import TypeCodec as TypeCodec
from .codec import check as check
from .codec import decode as decode
from .codec import decode_args as decode_args
from .codec import encode as encode
from .codec import encode_args as encode_args
from .dispatch import CallEnvelope as CallEnvelope
from .dispatch import Dispatcher as Dispatcher
from .dispatch import RetryPolicy as RetryPolicy
from .errors import *
from .principal import Principal as Principal
from .registry import SchemaRegistry as SchemaRegistry
from .stub import ServiceStub as ServiceStub
from .transport import LocalTransport as LocalTransport
from .transport import Reject as Reject
from .transport import StreamTransport as StreamTransport
from .types import *
