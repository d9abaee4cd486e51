"""
Bookings app.

Holds the minimal booking-side records the cancellation workflow reads
and writes:
- Listing: a bookable coworking space with its embedded cancellation policy
- Booking: a client's paid reservation of a listing
- BookingRefundEntry: append-only record of refunds issued against a booking

Listing search, availability and booking creation live elsewhere.

Related apps:
    - cancellations: requests cancellations and issues refunds
"""
