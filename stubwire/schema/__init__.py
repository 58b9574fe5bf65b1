"""Interface description language: parsing and loading."""

from .loader import build_services as build_services
from .loader import load_registry as load_registry
from .loader import to_descriptor as to_descriptor
from .parser import SchemaSyntaxError as SchemaSyntaxError
from .parser import parse as parse
from .types import *
