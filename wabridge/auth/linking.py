from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class QrLinking(BaseModel):
	model_config = ConfigDict(frozen=True)

	max_retries: int = Field(default=0, ge=0, description='Сколько раз QR может обновиться до отключения, 0 - без ограничения')


class PhoneLinking(BaseModel):
	model_config = ConfigDict(frozen=True)

	number: str = Field(description='Номер телефона в международном формате, только цифры')

	@field_validator('number', mode='before')
	@classmethod
	def normalize_number(cls, value: str) -> str:
		digits = ''.join(ch for ch in str(value) if ch.isdigit())
		if not digits:
			raise ValueError(f'Phone number {value!r} contains no digits')
		return digits


class LinkingMethod(BaseModel):
	"""Способ сопряжения нового устройства: QR-код или код по номеру телефона.

	```python
	LinkingMethod(qr=QrLinking(max_retries=3))
	LinkingMethod(phone=PhoneLinking(number='+7 900 000-00-00'))
	```
	"""

	model_config = ConfigDict(frozen=True)

	qr: QrLinking | None = None
	phone: PhoneLinking | None = None

	@model_validator(mode='after')
	def validate_exactly_one(self) -> Self:
		if self.qr is not None and self.phone is not None:
			raise ValueError('LinkingMethod accepts either qr or phone, not both')
		if self.qr is None and self.phone is None:
			object.__setattr__(self, 'qr', QrLinking())
		return self

	def is_qr(self) -> bool:
		return self.qr is not None

	def is_phone(self) -> bool:
		return self.phone is not None
