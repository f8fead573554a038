from ticketbridge.models.booking import Booking


def build_reservation_payload(b: Booking) -> dict:
    return {
        "event_id": b.event_id,
        "ticket_type_id": b.ticket_type_id,
        "quantity": int(b.quantity or 1),
        "customer_reference": b.booking_ref,
        "metadata": {
            "local_booking_id": b.id,
            "customer_email": b.customer_email,
        },
    }


def build_guest_payload(b: Booking) -> list[dict]:
    """Primary guest is the booker; extra guests come from guest_details."""
    guests = [{
        "first_name": b.customer_first_name or "",
        "last_name": b.customer_last_name or "",
        "email": b.customer_email or "",
        "phone": b.customer_phone or "",
        "is_primary": True,
    }]
    for g in b.guest_details or []:
        guests.append({
            "first_name": g.get("first_name", ""),
            "last_name": g.get("last_name", ""),
            "email": g.get("email", ""),
            "phone": g.get("phone", ""),
            "is_primary": False,
        })
    return guests


def build_booking_payload(reservation_id: str, b: Booking) -> dict:
    return {
        "reservation_id": reservation_id,
        "booking_email": b.customer_email or "",
        "payment_method": "invoice",
        "payment_reference": b.payment_reference or "",
        "booking_reference": b.booking_ref,
        "invoice_reference": b.booking_ref,
        "is_test_booking": False,
    }
