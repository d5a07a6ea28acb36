"""Create/edit form state for a Car, including images and the dirty check."""

from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

from dealer_mcp.constants import CAR_EXPAND, CARS, MIN_CAR_YEAR, TRANSMISSIONS
from dealer_mcp.controllers.debounce import RequestTracker
from dealer_mcp.data.references import (
    ById,
    Reference,
    ResolvedReferences,
    list_models,
    resolve_references,
    validate_references,
)
from dealer_mcp.data.store import FileUpload, RecordStore
from dealer_mcp.errors import DealerError, ValidationError, user_message
from dealer_mcp.normalization import as_number, normalize_transmission, parse_int, parse_price

logger = logging.getLogger(__name__)

SCALAR_FIELDS = (
    "year",
    "condition",
    "transmission",
    "mileage",
    "buy_price",
    "sell_price",
    "description",
)
SAVE_FAILED_MESSAGE = "Failed to save car."


@dataclass
class LocalAttachment:
    """A newly chosen file held in memory until submit."""

    filename: str
    content: bytes
    content_type: str
    preview_url: str | None = field(default_factory=lambda: f"blob:dealer-mcp/{uuid.uuid4()}")

    @property
    def revoked(self) -> bool:
        return self.preview_url is None

    def revoke(self) -> None:
        self.preview_url = None

    def to_upload(self) -> FileUpload:
        return FileUpload(self.filename, self.content, self.content_type)


@dataclass(frozen=True)
class SubmitResult:
    record: dict[str, Any]
    references: ResolvedReferences
    created: bool


class CarFormController:
    """Form lifecycle: open, edit, validate and submit one Car."""

    def __init__(
        self, store: RecordStore, *, today: Callable[[], date] = date.today
    ) -> None:
        self._store = store
        self._today = today
        self._model_requests = RequestTracker()
        self._pristine: tuple | None = None
        self._clear()

    def _clear(self) -> None:
        self.mode: str | None = None
        self.car_id: str | None = None
        self.values: dict[str, Any] = {}
        self.brand: Reference | None = None
        self.body_type: Reference | None = None
        self.model: Reference | None = None
        self.models: list[dict[str, Any]] = []
        self.models_loading = False
        self.existing_images: list[str] = []
        self.removed_images: list[str] = []
        self.attachments: list[LocalAttachment] = []
        self.submitting = False
        self.error: str | None = None

    # ── Opening ────────────────────────────────────────────────────

    def open_create(self) -> None:
        self.close()
        self._clear()
        self.mode = "create"
        self.values = {
            "year": self._today().year,
            "condition": None,
            "transmission": "Automatic",
            "mileage": None,
            "buy_price": None,
            "sell_price": None,
            "description": "",
        }
        self._pristine = self.snapshot()

    async def open_edit(self, car_id: str) -> None:
        """Load a Car (expanded) and populate every field from it."""
        car = await self._store.get_one(CARS, car_id, expand=CAR_EXPAND)
        self.close()
        self._clear()
        self.mode = "edit"
        self.car_id = car["id"]
        self.values = {
            "year": car.get("year"),
            "condition": car.get("condition"),
            "transmission": normalize_transmission(car.get("transmission")) or None,
            "mileage": car.get("mileage"),
            "buy_price": car.get("buy_price"),
            "sell_price": car.get("sell_price"),
            "description": car.get("description") or "",
        }
        model = (car.get("expand") or {}).get("model") or {}
        self.model = ById(car["model"]) if car.get("model") else None
        self.brand = ById(model["brand"]) if model.get("brand") else None
        self.body_type = ById(model["body_type"]) if model.get("body_type") else None
        self.existing_images = list(car.get("images") or [])
        if isinstance(self.brand, ById):
            await self._load_models(self.brand.id)
        self._pristine = self.snapshot()

    # ── Field edits ────────────────────────────────────────────────

    def set_field(self, name: str, value: Any) -> None:
        if name not in SCALAR_FIELDS:
            raise ValidationError(name, f"Unknown car field {name!r}")
        self.values[name] = value

    async def select_brand(self, brand: Reference | None) -> None:
        """Change brand: clears the model and reloads the brand's models."""
        self.brand = brand
        self.model = None
        if isinstance(brand, ById):
            await self._load_models(brand.id)
        else:
            # A new or cleared brand has no models yet.
            self._model_requests.invalidate()
            self.models = []
            self.models_loading = False

    def select_model(self, model: Reference | None) -> None:
        self.model = model

    def select_body_type(self, body_type: Reference | None) -> None:
        self.body_type = body_type

    async def _load_models(self, brand_id: str) -> None:
        token = self._model_requests.issue()
        self.models_loading = True
        try:
            models = await list_models(self._store, brand_id)
        except DealerError as exc:
            if self._model_requests.is_current(token):
                logger.error("Loading models for brand %s failed: %s", brand_id, exc)
                self.error = user_message(exc, "Failed to load models.")
                self.models = []
                self.models_loading = False
            return
        if not self._model_requests.is_current(token):
            return
        self.models = models
        self.models_loading = False

    # ── Images ─────────────────────────────────────────────────────

    def remove_existing_image(self, filename: str) -> None:
        if filename not in self.existing_images:
            raise ValidationError("images", f"Image {filename!r} is not attached to this car")
        if filename not in self.removed_images:
            self.removed_images.append(filename)

    def restore_existing_image(self, filename: str) -> None:
        if filename in self.removed_images:
            self.removed_images.remove(filename)

    def attach_image(
        self, filename: str, content: bytes, content_type: str | None = None
    ) -> LocalAttachment:
        if not filename:
            raise ValidationError("images", "Attached file needs a name")
        guessed = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        attachment = LocalAttachment(filename, content, guessed)
        self.attachments.append(attachment)
        return attachment

    def remove_attachment(self, index: int) -> None:
        attachment = self.attachments.pop(index)
        attachment.revoke()

    def kept_images(self) -> list[str]:
        return [name for name in self.existing_images if name not in self.removed_images]

    def final_images(self) -> list[str | FileUpload]:
        """Existing images minus removals, then new uploads.  Order is preserved."""
        return [*self.kept_images(), *(a.to_upload() for a in self.attachments)]

    # ── State ──────────────────────────────────────────────────────

    def snapshot(self) -> tuple:
        values = tuple((name, _comparable(self.values.get(name))) for name in SCALAR_FIELDS)
        return (
            values,
            self.brand,
            self.body_type,
            self.model,
            tuple(self.kept_images()),
            tuple(id(a) for a in self.attachments),
        )

    @property
    def is_dirty(self) -> bool:
        return self._pristine is not None and self.snapshot() != self._pristine

    @property
    def can_submit(self) -> bool:
        if self.mode is None or self.submitting or self.models_loading:
            return False
        if self.mode == "edit":
            return self.is_dirty
        return True

    # ── Validation & submit ────────────────────────────────────────

    def validate(self) -> dict[str, Any]:
        """Check references and scalar fields.  Returns the cleaned scalar values."""
        validate_references(self.brand, self.body_type, self.model)
        current_year = self._today().year

        year = parse_int(self.values.get("year"))
        if year is None:
            raise ValidationError("year", "Year is required")
        if not MIN_CAR_YEAR <= year <= current_year:
            raise ValidationError(
                "year", f"Year must be between {MIN_CAR_YEAR} and {current_year}"
            )

        condition = parse_price(self.values.get("condition"))
        if condition is None:
            raise ValidationError("condition", "Condition is required")
        if not 0 <= condition <= 100:
            raise ValidationError("condition", "Condition must be between 0 and 100")

        transmission = normalize_transmission(self.values.get("transmission"))
        if not transmission:
            raise ValidationError("transmission", "Transmission is required")
        if transmission not in TRANSMISSIONS:
            raise ValidationError("transmission", "Transmission must be Automatic or Manual")

        cleaned: dict[str, Any] = {
            "year": year,
            "condition": as_number(condition),
            "transmission": transmission,
        }
        for name, label in (
            ("mileage", "Mileage"),
            ("buy_price", "Buy price"),
            ("sell_price", "Sell price"),
        ):
            amount = parse_price(self.values.get(name))
            if amount is None:
                raise ValidationError(name, f"{label} is required")
            if amount < 0:
                raise ValidationError(name, f"{label} must be zero or more")
            cleaned[name] = as_number(amount)
        cleaned["description"] = str(self.values.get("description") or "").strip()
        return cleaned

    def build_payload(self, scalars: dict[str, Any], model_id: str) -> dict[str, Any]:
        payload: dict[str, Any] = {**scalars, "model": model_id}
        uploads = [a.to_upload() for a in self.attachments]
        if self.mode == "create":
            payload["images"] = self.final_images()
            payload["is_sold"] = False
            return payload
        if self.removed_images:
            payload["images-"] = list(self.removed_images)
        if uploads:
            payload["images+"] = uploads
        return payload

    async def submit(self) -> SubmitResult:
        """Validate, resolve references, then create or update the Car in one call.

        On failure the form keeps its state so the user can retry.
        """
        if self.mode is None:
            raise RuntimeError("Form is not open")
        if self.mode == "edit" and not self.is_dirty:
            raise ValidationError("form", "No changes to save")
        if self.submitting:
            raise RuntimeError("Submit already in progress")

        self.error = None
        try:
            scalars = self.validate()
        except ValidationError as exc:
            self.error = str(exc)
            raise

        self.submitting = True
        try:
            refs = await resolve_references(
                self._store, brand=self.brand, body_type=self.body_type, model=self.model
            )
            payload = self.build_payload(scalars, refs.model_id)
            if self.mode == "create":
                record = await self._store.create(CARS, payload)
            else:
                record = await self._store.update(CARS, str(self.car_id), payload)
        except DealerError as exc:
            logger.error("Saving car %s failed: %s", self.car_id or "(new)", exc)
            self.error = user_message(exc, SAVE_FAILED_MESSAGE)
            raise
        finally:
            self.submitting = False

        created = self.mode == "create"
        self._after_save(record, refs)
        logger.info("%s car %s", "Created" if created else "Updated", record["id"])
        return SubmitResult(record=record, references=refs, created=created)

    def _after_save(self, record: dict[str, Any], refs: ResolvedReferences) -> None:
        for attachment in self.attachments:
            attachment.revoke()
        self.attachments = []
        self.removed_images = []
        self.existing_images = list(record.get("images") or [])
        self.mode = "edit"
        self.car_id = record["id"]
        # Later edits refer to what was saved, by id.
        self.brand = ById(refs.brand_id)
        if refs.body_type_id:
            self.body_type = ById(refs.body_type_id)
        self.model = ById(refs.model_id)
        if refs.created_model is not None:
            self.models = [*self.models, refs.created_model]
        self._pristine = self.snapshot()

    def close(self) -> None:
        """Revoke every preview URL.  Safe to call repeatedly."""
        for attachment in self.attachments:
            attachment.revoke()
        self._model_requests.invalidate()


def _comparable(value: Any) -> Any:
    """Normalise form values so ``"150"`` and ``150`` compare equal."""
    if isinstance(value, str):
        stripped = value.strip()
        number = parse_price(stripped) if stripped and _looks_numeric(stripped) else None
        return as_number(number) if number is not None else stripped
    if isinstance(value, float):
        return as_number(value)
    return value


def _looks_numeric(text: str) -> bool:
    return text.replace(".", "", 1).replace("-", "", 1).isdigit()
