"""Test helper utilities for the repokit test suite."""

from tests.helpers.entities import (
    USER_FIELDS,
    TaggedUser,
    User,
    tagged_mapping,
    user_mapping,
)
from tests.helpers.factories import UserFactory, create_test_user

__all__ = [
    # Entities
    "USER_FIELDS",
    "TaggedUser",
    "User",
    "tagged_mapping",
    "user_mapping",
    # Factories
    "UserFactory",
    "create_test_user",
]
