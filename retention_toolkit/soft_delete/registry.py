"""
Entity registry and cascade table.

The registry is the single source of truth for which tables take part in the
lifecycle, which dependent rows a permanent delete removes, and the order in
which the sweeper visits tables.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Type, Union

from .. import entities
from .exceptions import UnknownEntityTypeError
from .mixins import SoftDeleteMixin


class EntityType(str, Enum):
    """Tables participating in the deletion lifecycle."""

    # Soft-deletable
    USER = "user"
    PROFILE = "profile"
    POST = "post"
    LISTING = "listing"
    COMMENT = "comment"
    MESSAGE = "message"
    MEDIA = "media"
    NOTIFICATION = "notification"

    # Auxiliary
    LIKE = "like"
    SAVE = "save"
    FOLLOW = "follow"
    LISTING_DETAILS = "listing_details"
    CONVERSATION = "conversation"
    REPORT = "report"


@dataclass(frozen=True)
class EntityRef:
    """Dependent rows in ``entity_type`` whose ``columns`` hold the parent id."""

    entity_type: EntityType
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class EntityRegistration:
    """Schema accessor and cascade rule for one entity type."""

    entity_type: EntityType
    model: Type
    cascade: Tuple[EntityRef, ...] = field(default_factory=tuple)

    @property
    def soft_deletable(self) -> bool:
        return issubclass(self.model, SoftDeleteMixin)

    @property
    def table_name(self) -> str:
        return self.model.__tablename__


def _ref(entity_type: EntityType, *columns: str) -> EntityRef:
    return EntityRef(entity_type=entity_type, columns=tuple(columns))


class EntityRegistry:
    """
    Typed mapping of ``EntityType`` to its registration.

    The cascade table is validated on construction: every referenced type must
    be registered, every referenced column must exist, and the dependency
    graph between soft-deletable types must be acyclic.
    """

    def __init__(self, registrations: Sequence[EntityRegistration]):
        self._registrations: Mapping[EntityType, EntityRegistration] = (
            MappingProxyType({r.entity_type: r for r in registrations})
        )
        self._validate()
        self._sweep_order = self._compute_sweep_order()

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._registrations

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self._registrations.values())

    def __len__(self) -> int:
        return len(self._registrations)

    def get(self, entity_type: Union[EntityType, str]) -> EntityRegistration:
        """
        Look up a registration by enum member or table name.

        Raises:
            UnknownEntityTypeError: If the name is not registered
        """
        try:
            key = EntityType(entity_type)
        except ValueError:
            raise UnknownEntityTypeError(str(entity_type)) from None

        registration = self._registrations.get(key)
        if registration is None:
            raise UnknownEntityTypeError(key.value)
        return registration

    def is_soft_deletable(self, entity_type: EntityType) -> bool:
        return self.get(entity_type).soft_deletable

    def auxiliary_refs(self, entity_type: EntityType) -> List[EntityRef]:
        """Dependents hard-deleted in the parent's transaction, in order."""
        return [
            ref
            for ref in self.get(entity_type).cascade
            if not self.is_soft_deletable(ref.entity_type)
        ]

    def lifecycle_refs(self, entity_type: EntityType) -> List[EntityRef]:
        """Dependents with their own lifecycle; never cascaded."""
        return [
            ref
            for ref in self.get(entity_type).cascade
            if self.is_soft_deletable(ref.entity_type)
        ]

    def soft_deletable_types(self) -> List[EntityType]:
        return [r.entity_type for r in self if r.soft_deletable]

    def sweep_order(self) -> List[EntityType]:
        """Soft-deletable types ordered children before parents."""
        return list(self._sweep_order)

    def _validate(self) -> None:
        for registration in self:
            for ref in registration.cascade:
                if ref.entity_type not in self._registrations:
                    raise ValueError(
                        f"{registration.entity_type.value} cascades to "
                        f"unregistered type {ref.entity_type.value}"
                    )
                if not ref.columns:
                    raise ValueError(
                        f"Cascade {registration.entity_type.value} -> "
                        f"{ref.entity_type.value} names no columns"
                    )
                model = self._registrations[ref.entity_type].model
                for column in ref.columns:
                    if column not in model.__table__.columns:
                        raise ValueError(
                            f"{ref.entity_type.value} has no column '{column}'"
                        )

    def _compute_sweep_order(self) -> Tuple[EntityType, ...]:
        # Depth-first post-order: a type is emitted only after every
        # soft-deletable dependent. Declaration order breaks ties.
        order: List[EntityType] = []
        state: Dict[EntityType, str] = {}

        def visit(entity_type: EntityType, path: List[EntityType]) -> None:
            mark = state.get(entity_type)
            if mark == "done":
                return
            if mark == "visiting":
                cycle = " -> ".join(t.value for t in path + [entity_type])
                raise ValueError(f"Cascade graph contains a cycle: {cycle}")

            state[entity_type] = "visiting"
            for ref in self.lifecycle_refs(entity_type):
                if ref.entity_type != entity_type:
                    visit(ref.entity_type, path + [entity_type])
            state[entity_type] = "done"
            order.append(entity_type)

        for entity_type in self.soft_deletable_types():
            visit(entity_type, [])

        return tuple(order)


# Declaration order runs from leaves to the root identity table.
DEFAULT_REGISTRATIONS: Tuple[EntityRegistration, ...] = (
    EntityRegistration(EntityType.MEDIA, entities.Media),
    EntityRegistration(EntityType.NOTIFICATION, entities.Notification),
    EntityRegistration(
        EntityType.COMMENT,
        entities.Comment,
        cascade=(
            _ref(EntityType.LIKE, "comment_id"),
            _ref(EntityType.NOTIFICATION, "comment_id"),
        ),
    ),
    EntityRegistration(EntityType.MESSAGE, entities.Message),
    EntityRegistration(
        EntityType.POST,
        entities.Post,
        cascade=(
            _ref(EntityType.LIKE, "post_id"),
            _ref(EntityType.SAVE, "post_id"),
            _ref(EntityType.COMMENT, "post_id"),
            _ref(EntityType.MEDIA, "post_id"),
            _ref(EntityType.NOTIFICATION, "post_id"),
        ),
    ),
    EntityRegistration(
        EntityType.LISTING,
        entities.Listing,
        cascade=(
            _ref(EntityType.LISTING_DETAILS, "listing_id"),
            _ref(EntityType.MEDIA, "listing_id"),
        ),
    ),
    EntityRegistration(EntityType.PROFILE, entities.Profile),
    EntityRegistration(
        EntityType.USER,
        entities.User,
        cascade=(
            _ref(EntityType.FOLLOW, "follower_id", "following_id"),
            _ref(EntityType.LIKE, "user_id"),
            _ref(EntityType.SAVE, "user_id"),
            _ref(EntityType.CONVERSATION, "user1_id", "user2_id"),
            _ref(EntityType.REPORT, "reporter_id"),
            _ref(EntityType.PROFILE, "user_id"),
            _ref(EntityType.POST, "author_id"),
            _ref(EntityType.LISTING, "author_id"),
            _ref(EntityType.COMMENT, "author_id"),
            _ref(EntityType.MESSAGE, "sender_id", "receiver_id"),
            _ref(EntityType.NOTIFICATION, "recipient_id", "sender_id"),
        ),
    ),
    EntityRegistration(EntityType.LIKE, entities.Like),
    EntityRegistration(EntityType.SAVE, entities.Save),
    EntityRegistration(EntityType.FOLLOW, entities.Follow),
    EntityRegistration(EntityType.LISTING_DETAILS, entities.ListingDetails),
    EntityRegistration(
        EntityType.CONVERSATION,
        entities.Conversation,
        cascade=(_ref(EntityType.MESSAGE, "conversation_id"),),
    ),
    EntityRegistration(EntityType.REPORT, entities.Report),
)

_default_registry: Optional[EntityRegistry] = None


def get_registry() -> EntityRegistry:
    """Get the registry built from the default cascade table."""
    global _default_registry
    if _default_registry is None:
        _default_registry = EntityRegistry(DEFAULT_REGISTRATIONS)
    return _default_registry
