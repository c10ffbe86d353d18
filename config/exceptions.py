"""
Error kinds raised by the circulation services.

Each one is a DRF ``APIException`` so the request layer turns it into the
matching HTTP response without any per-view translation. Services raise them
inside ``transaction.atomic`` blocks, so every partial write is rolled back.
"""

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.exceptions import NotFound as DRFNotFound


class NoCopiesAvailable(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "No copies of this book are available."
    default_code = "no_copies_available"


class AvailabilityConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Available copies would exceed total copies."
    default_code = "availability_conflict"


class DuplicateBorrow(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "User already has this book borrowed."
    default_code = "duplicate_borrow"


class DuplicateReservation(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "User already has a pending reservation for this book."
    default_code = "duplicate_reservation"


class NotFound(DRFNotFound):
    default_detail = "Record not found."
    default_code = "not_found"


class AlreadyReturned(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "This book has already been returned."
    default_code = "already_returned"


class NoFineDue(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "No fine to pay for this borrowing."
    default_code = "no_fine_due"


class InvalidAmount(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Payment amount must be a positive number."
    default_code = "invalid_amount"


class PolicyValidationError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid fine policy values."
    default_code = "invalid_policy"


class InvalidReservationState(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Reservation is not pending."
    default_code = "invalid_reservation_state"


class ReservationMismatch(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Reservation details do not match the borrowing request."
    default_code = "reservation_mismatch"
