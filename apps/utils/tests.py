# apps/utils/tests.py
import json
import logging

from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated

from .exceptions import (
    AuthorizationFailure,
    ConsistencyFailure,
    ResourceNotFound,
    StateConflict,
    ValidationFailure,
    custom_exception_handler,
)
from .logging import JSONFormatter


class ExceptionHandlerTests(SimpleTestCase):

    def test_business_errors_map_to_status(self):
        cases = [
            (ValidationFailure("bad"), status.HTTP_400_BAD_REQUEST),
            (AuthorizationFailure("no"), status.HTTP_403_FORBIDDEN),
            (ResourceNotFound("gone"), status.HTTP_404_NOT_FOUND),
            (StateConflict("late"), status.HTTP_409_CONFLICT),
            (ConsistencyFailure("broken"), status.HTTP_500_INTERNAL_SERVER_ERROR),
        ]
        for exc, expected in cases:
            with self.subTest(exc=type(exc).__name__):
                response = custom_exception_handler(exc, {})
                self.assertEqual(response.status_code, expected)
                self.assertEqual(response.data["code"], exc.default_code)

    def test_details_are_returned_as_data(self):
        exc = StateConflict("late", code="ALREADY_PAID", details={"paid_at": "2024-01-01T00:00:00"})
        response = custom_exception_handler(exc, {})
        self.assertEqual(
            response.data,
            {"error": "late", "code": "ALREADY_PAID", "data": {"paid_at": "2024-01-01T00:00:00"}},
        )

    def test_drf_errors_pass_through(self):
        response = custom_exception_handler(NotAuthenticated(), {})
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_unexpected_errors_are_hidden(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("secret detail"), {})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertNotIn("secret detail", json.dumps(response.data))


class JSONFormatterTests(SimpleTestCase):

    def make_record(self, msg, **extra):
        record = logging.LogRecord("apps.orders", logging.INFO, __file__, 1, msg, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_fields_are_lifted(self):
        payload = json.loads(JSONFormatter().format(self.make_record("placed", order_number="ORD-1")))
        self.assertEqual(payload["msg"], "placed")
        self.assertEqual(payload["order_number"], "ORD-1")
        self.assertEqual(payload["lvl"], "INFO")

    def test_sensitive_keys_are_scrubbed(self):
        record = self.make_record({"email": "a@b.c", "password": "hunter2", "nested": {"token": "t"}})
        payload = json.loads(JSONFormatter().format(record))
        self.assertNotIn("hunter2", payload["msg"])
        self.assertNotIn("'t'", payload["msg"])
        self.assertIn("***REDACTED***", payload["msg"])


class HealthCheckTests(TestCase):

    def test_health(self):
        response = self.client.get(reverse("health-check"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["components"], {"db": "ok", "cache": "ok"})

    def test_server_info(self):
        response = self.client.get(reverse("server-info"))
        self.assertEqual(response.json()["app_name"], "Marketplace")
