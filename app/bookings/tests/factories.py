"""
Factory Boy factories for booking test data.

Usage:
    from bookings.tests.factories import BookingFactory, ListingFactory, UserFactory

    booking = BookingFactory()                       # paid, starts in 10 days
    booking = BookingFactory(payment_reference="")   # never charged
    listing = ListingFactory(cancellation_policy={"type": "strict", ...})
"""

from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from bookings.models import Booking, BookingStatus, Listing


class UserFactory(factory.django.DjangoModelFactory):
    """Minimal user for bookings and cancellation tests."""

    class Meta:
        model = "auth.User"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    first_name = factory.Faker("first_name")
    last_name = factory.Faker("last_name")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class AdminUserFactory(UserFactory):
    is_staff = True
    is_superuser = True


class ListingFactory(factory.django.DjangoModelFactory):
    """Listing with the platform default (empty) policy document."""

    class Meta:
        model = Listing

    owner = factory.SubFactory(UserFactory)
    title = factory.Sequence(lambda n: f"Hot Desk {n}")
    city = "Manila"
    cancellation_policy = factory.LazyFunction(dict)


class BookingFactory(factory.django.DjangoModelFactory):
    """
    Paid booking starting ten days from now.

    Pass start_date to place the booking relative to a frozen clock.
    """

    class Meta:
        model = Booking

    client = factory.SubFactory(UserFactory)
    listing = factory.SubFactory(ListingFactory)
    status = BookingStatus.PAID
    start_date = factory.LazyFunction(lambda: timezone.now() + timedelta(days=10))
    end_date = factory.LazyAttribute(lambda o: o.start_date + timedelta(hours=8))
    amount = Decimal("1000.00")
    currency = "usd"
    payment_reference = factory.Sequence(lambda n: f"pi_test_{n:06d}")
    payment_provider = "stripe"
