#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Type hints used internally by this package.

Modules in this package do "from .internal_types import *" to pick up the common
typing names in one place.
"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Type, Union, Any, TypeVar, Tuple, Set, Callable, Awaitable,
    Iterable, Iterator, Mapping, MutableMapping, Sequence, Generator,
    AsyncIterable, AsyncIterator, AsyncContextManager, TYPE_CHECKING, cast,
  )

from typing_extensions import Self, Final, Literal

from types import TracebackType

HostAndPort = Tuple[str, int]
"""An (ip_address, port) pair as used by socket addresses."""

RGB = Tuple[int, int, int]
"""A single pixel color as (red, green, blue), each 0..255."""

JsonableTypes = (str, int, float, bool, dict, list)

Jsonable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A value that can be serialized with json.dumps()."""

JsonableDict = Dict[str, Jsonable]
"""A dict that can be serialized with json.dumps()."""
