"""
Cancellations app.

This app handles:
- Refund policies and refund calculation
- Cancellation requests and their approval workflow
- Refunds through the payment gateway, with retries and reconciliation
- Admin and owner reporting on cancellations

Related apps:
    - bookings: the booking being cancelled and its refund ledger
"""
