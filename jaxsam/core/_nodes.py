import abc
import enum
import functools
import itertools
from typing import Any, Generic, Optional, TextIO, Type, TypeVar

from jax import numpy as jnp
from overrides import EnforceOverrides, final

from .. import hints
from .._errors import DimensionMismatchError, UninitializedNodeError

NodeType = TypeVar("NodeType", bound="NodeBase")
NodeValueType = TypeVar("NodeValueType", bound=hints.NodeValue)

_unique_id_counter = itertools.count()


class NodeState(enum.Enum):
    UNINITIALIZED = enum.auto()
    INITIALIZED = enum.auto()
    """Has an estimate, but has not been linearized into a system yet."""
    LINEARIZED = enum.auto()
    """Has an estimate and a linearization point."""


class NodeBase(abc.ABC, Generic[NodeValueType], EnforceOverrides):
    """Base class for node types: unknown quantities like poses or landmarks.

    A node instance is a handle, hashed by identity. It carries two values: the
    current estimate (`value`) and the point the system was last linearized around
    (`value0`). Only the optimization engine moves either of them after
    initialization.
    """

    name: str = "Node"
    """Type tag, used for text serialization."""

    # (1) Functions that must be overriden in subclasses.

    @staticmethod
    @abc.abstractmethod
    def get_value_type() -> type:
        """Value type of this node, eg `Pose2d`."""

    # (2) Functions to override for custom manifolds.

    @classmethod
    def manifold_retract(
        cls, x: NodeValueType, local_delta: hints.LocalNodeValue
    ) -> NodeValueType:
        r"""Apply a local delta to a value.

        Typically written as `x $\oplus$ local_delta`. The default adds vectors and
        normalizes any angular components of the result.
        """
        return cls.get_value_type().from_vector(x.vector() + local_delta).normalize()

    # (3) Shared implementation details.

    def __init__(self):
        super().__init__()
        self._unique_id: int = next(_unique_id_counter)
        self._value: Optional[NodeValueType] = None
        self._value0: Optional[NodeValueType] = None
        self._column: Optional[int] = None
        self._owner: Optional[Any] = None
        self._index: Optional[int] = None

    @classmethod
    @final
    def get_dim(cls) -> int:
        """Dimensionality of the vector encoding (and of the local delta)."""
        return cls.get_value_type().dim

    @classmethod
    @final
    def get_default_value(cls) -> NodeValueType:
        return cls.get_value_type()()

    @classmethod
    @functools.lru_cache(maxsize=None)
    def canonical_instance(cls: Type[NodeType]) -> NodeType:
        """Returns the 'canonical instance' of a node type. For a given class, this
        will be the same instance each time the method is called. Used for sharing
        compiled linearization functions between factors."""
        return cls()

    @property
    @final
    def unique_id(self) -> int:
        return self._unique_id

    @property
    @final
    def state(self) -> NodeState:
        if self._value is None:
            return NodeState.UNINITIALIZED
        if self._column is None:
            return NodeState.INITIALIZED
        return NodeState.LINEARIZED

    @property
    @final
    def initialized(self) -> bool:
        return self._value is not None

    @property
    @final
    def column(self) -> Optional[int]:
        """First column of this node in its owner's linear system. Only valid while
        the owner's variable ordering is unchanged."""
        return self._column

    @property
    @final
    def value(self) -> NodeValueType:
        """Current estimate."""
        if self._value is None:
            raise UninitializedNodeError(f"{self} has not been initialized")
        return self._value

    @property
    @final
    def value0(self) -> NodeValueType:
        """Linearization point."""
        if self._value0 is None:
            raise UninitializedNodeError(f"{self} has not been initialized")
        return self._value0

    @final
    def vector(self) -> jnp.ndarray:
        return self.value.vector()

    @final
    def vector0(self) -> jnp.ndarray:
        return self.value0.vector()

    @final
    def init(self, value: NodeValueType) -> None:
        """Set the initial estimate. Can only be called once."""
        if self._value is not None:
            raise ValueError(f"{self} is already initialized")
        value_type = self.get_value_type()
        if not isinstance(value, value_type):
            raise TypeError(
                f"{type(self).__name__} expects a {value_type.__name__}, got"
                f" {type(value).__name__}"
            )
        if value.vector().shape != (self.get_dim(),):
            raise DimensionMismatchError(
                f"{type(self).__name__} expects a vector of length {self.get_dim()},"
                f" got shape {value.vector().shape}"
            )
        self._value = value
        self._value0 = value

    @final
    def write(self, out: TextIO) -> None:
        out.write(f"{self.name}_Node {self._unique_id}")
        if self._value is not None:
            out.write(f" {self._value}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(unique_id={self._unique_id})"

    # Engine-private mutation.

    def _update(self, value: NodeValueType) -> None:
        self._value = value

    def _linearize(self) -> None:
        """Move the linearization point to the current estimate."""
        self._value0 = self._value

    def _set_column(self, column: Optional[int]) -> None:
        self._column = column

    def _reset(self) -> None:
        """Undo `init()`. Used to roll back a failed factor insertion."""
        assert self._column is None
        self._value = None
        self._value0 = None
