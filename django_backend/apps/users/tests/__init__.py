"""
Test utilities for the users application.
"""

import factory
from faker import Faker

from apps.users.choices import UserRole
from apps.users.directory import UserProfile

fake = Faker()


class UserProfileFactory(factory.Factory):
    """Factory for identity profiles held by a ``UserDirectory``."""

    class Meta:
        model = UserProfile

    id = factory.Sequence(lambda n: f"user-{n}")
    name = factory.LazyFunction(fake.name)
    email = factory.LazyFunction(fake.email)
    role = UserRole.ATTORNEY
