"""Конечный автомат входа в WhatsApp Web.

START -> DETECTING -> {NEEDS_PAIRING, ALREADY_AUTHENTICATED} -> PAIRING_IN_PROGRESS -> AUTHENTICATED -> READY,
конечное состояние AUTH_FAILED достижимо из START и PAIRING_IN_PROGRESS.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

from bubus import EventBus
from pydantic import BaseModel, ConfigDict

from wabridge.auth import selectors
from wabridge.auth.linking import LinkingMethod
from wabridge.auth.strategies import AuthStrategy
from wabridge.events import AuthFailureEvent, DisconnectedEvent, PairingCodeReceivedEvent, QrReceivedEvent
from wabridge.exceptions import AuthDetectionTimeout, MaxPairingRetriesExceeded, PageClosedDuringOperation

if TYPE_CHECKING:
	from wabridge.session.session import PageSession

PHONE_INPUT_TIMEOUT_MS = 30_000

_QR_OBSERVER = """(qrContainerSelector, qrRetrySelector) => {
	const qrContainer = document.querySelector(qrContainerSelector);
	window.qrChanged(qrContainer.dataset.ref);

	const observer = new MutationObserver((mutations) => {
		for (const mutation of mutations) {
			if (mutation.type === 'attributes' && mutation.attributeName === 'data-ref') {
				window.qrChanged(mutation.target.dataset.ref);
			} else if (mutation.type === 'childList') {
				const retryButton = document.querySelector(qrRetrySelector);
				if (retryButton) retryButton.click();
			}
		}
	});

	observer.observe(qrContainer.parentElement, {
		subtree: true,
		childList: true,
		attributes: true,
		attributeFilter: ['data-ref'],
	});
}"""

_PHONE_CODE_OBSERVER = """async (codeContainerSelector, generateNewCodeXPath, linkWithPhoneViewSelector) => {
	const waitForElementToExist = (selector, timeout = 60000) => new Promise((resolve, reject) => {
		const existing = document.querySelector(selector);
		if (existing) return resolve(existing);
		const observer = new MutationObserver(() => {
			const element = document.querySelector(selector);
			if (element) {
				observer.disconnect();
				resolve(element);
			}
		});
		observer.observe(document.body, { subtree: true, childList: true });
		if (timeout > 0) {
			setTimeout(() => {
				observer.disconnect();
				reject(new Error(`waitForElementToExist: ${selector} not found in time`));
			}, timeout);
		}
	});

	const readCode = (container) => Array.from(container.children[0].children)
		.map((part) => part.textContent)
		.join('');

	const codeContainer = await waitForElementToExist(codeContainerSelector);
	let lastCode = readCode(codeContainer);
	window.codeChanged(lastCode);

	const generateButtonXPath = () => document.evaluate(
		generateNewCodeXPath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null,
	).singleNodeValue;

	const codeObserver = new MutationObserver(() => {
		const container = document.querySelector(codeContainerSelector);
		if (!container) return;
		const code = readCode(container);
		if (code && code !== lastCode) {
			lastCode = code;
			window.codeChanged(code);
		}
	});
	codeObserver.observe(codeContainer, { subtree: true, childList: true, characterData: true });

	const linkView = document.querySelector(linkWithPhoneViewSelector) || document.body;
	const generateObserver = new MutationObserver(() => {
		const button = generateButtonXPath();
		if (button) button.click();
	});
	generateObserver.observe(linkView, { subtree: true, childList: true });
}"""


class AuthState(str, Enum):
	START = 'START'
	DETECTING = 'DETECTING'
	NEEDS_PAIRING = 'NEEDS_PAIRING'
	ALREADY_AUTHENTICATED = 'ALREADY_AUTHENTICATED'
	PAIRING_IN_PROGRESS = 'PAIRING_IN_PROGRESS'
	AUTHENTICATED = 'AUTHENTICATED'
	READY = 'READY'
	AUTH_FAILED = 'AUTH_FAILED'


_TRANSITIONS: dict[AuthState, set[AuthState]] = {
	AuthState.START: {AuthState.DETECTING, AuthState.AUTH_FAILED},
	AuthState.DETECTING: {AuthState.NEEDS_PAIRING, AuthState.ALREADY_AUTHENTICATED},
	AuthState.NEEDS_PAIRING: {AuthState.PAIRING_IN_PROGRESS, AuthState.AUTH_FAILED},
	AuthState.ALREADY_AUTHENTICATED: {AuthState.AUTHENTICATED},
	AuthState.PAIRING_IN_PROGRESS: {AuthState.AUTHENTICATED, AuthState.AUTH_FAILED},
	AuthState.AUTHENTICATED: {AuthState.READY},
	AuthState.READY: set(),
	AuthState.AUTH_FAILED: set(),
}


class AuthResult(BaseModel):
	"""Итог run(): конечное состояние и что делать клиенту дальше."""

	model_config = ConfigDict(arbitrary_types_allowed=True)

	state: AuthState
	restart: bool = False
	aborted: bool = False
	error: Exception | None = None

	@property
	def authenticated(self) -> bool:
		return self.state == AuthState.AUTHENTICATED and not self.aborted


class AuthStateMachine:
	"""Определяет, вошёл ли пользователь, и проводит сопряжение, если нет.

	Автомат не опрашивает DOM сам: все ожидания идут через PageSession
	(wait_for_selector, expose_function, evaluate).

	Args:
		session: страница WhatsApp Web
		strategy: стратегия аутентификации клиента
		linking_method: QR или код по номеру телефона
		event_bus: шина клиента для событий qr / code / auth_failure / disconnected
		destroy: корутина, закрывающая сессию клиента
		main_selector: селектор главного экрана
		auth_timeout_ms: ограничение каждого ожидания при определении состояния
	"""

	def __init__(
		self,
		session: 'PageSession',
		strategy: AuthStrategy,
		linking_method: LinkingMethod,
		event_bus: EventBus,
		destroy: Callable[[], Awaitable[None]],
		main_selector: str = selectors.DEFAULT_MAIN_SCREEN_SELECTOR,
		auth_timeout_ms: int = 60_000,
	) -> None:
		self.session = session
		self.strategy = strategy
		self.linking_method = linking_method
		self.event_bus = event_bus
		self._destroy = destroy
		self.main_selector = main_selector
		self.auth_timeout_ms = auth_timeout_ms

		self.state = AuthState.START
		self.qr_retries = 0
		self._pairing_error: Exception | None = None

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'wabridge.AuthStateMachine.{self.session.id[-4:]}')

	def _transition(self, new_state: AuthState) -> None:
		if new_state not in _TRANSITIONS[self.state]:
			raise RuntimeError(f'Invalid auth state transition {self.state.value} -> {new_state.value}')
		self.logger.debug(f'🔐 Auth state {self.state.value} -> {new_state.value}')
		self.state = new_state

	def mark_ready(self) -> None:
		self._transition(AuthState.READY)

	# region - detection

	async def detect(self) -> AuthState:
		"""Гонка двух ожиданий: главный экран против экрана сопряжения.

		Побеждает первое завершившееся ожидание, успешное или нет; проигравшее отменяется.
		Ошибка победителя превращается в AuthDetectionTimeout.
		"""
		self._transition(AuthState.DETECTING)

		main_wait = asyncio.ensure_future(self.session.wait_for_selector(self.main_selector, self.auth_timeout_ms))
		pairing_wait = asyncio.ensure_future(
			self.session.wait_for_selector(selectors.PAIRING_SCREEN_SELECTOR, self.auth_timeout_ms)
		)
		try:
			done, pending = await asyncio.wait({main_wait, pairing_wait}, return_when=asyncio.FIRST_COMPLETED)
		except asyncio.CancelledError:
			main_wait.cancel()
			pairing_wait.cancel()
			raise

		for loser in pending:
			loser.cancel()
		await asyncio.gather(*pending, return_exceptions=True)

		# обе страницы уже на месте: предпочитаем главный экран
		if main_wait in done:
			winner, selector = main_wait, self.main_selector
			if pairing_wait in done and not pairing_wait.cancelled():
				pairing_wait.exception()
		else:
			winner, selector = pairing_wait, selectors.PAIRING_SCREEN_SELECTOR

		error = winner.exception()
		if error is not None:
			if isinstance(error, PageClosedDuringOperation):
				raise error
			raise AuthDetectionTimeout(
				f'Auth detection failed waiting for {selector!r}: {type(error).__name__}: {error}',
				selector=selector,
				timeout_ms=self.auth_timeout_ms,
			) from error

		next_state = AuthState.ALREADY_AUTHENTICATED if winner is main_wait else AuthState.NEEDS_PAIRING
		self._transition(next_state)
		return next_state

	# endregion

	async def run(self) -> AuthResult:
		"""Провести вход до AUTHENTICATED или AUTH_FAILED."""
		try:
			detected = await self.detect()
		except PageClosedDuringOperation as e:
			if e.during_teardown:
				self.logger.debug('🔐 Page closed during auth detection, stopping quietly')
				return AuthResult(state=self.state, aborted=True)
			raise

		if detected == AuthState.ALREADY_AUTHENTICATED:
			self._transition(AuthState.AUTHENTICATED)
			return AuthResult(state=self.state)

		needed = await self.strategy.on_authentication_needed()
		if needed.failed:
			self._transition(AuthState.AUTH_FAILED)
			self.logger.warning(f'❌ Auth strategy reported failure: {needed.failure_event_payload}')
			self.event_bus.dispatch(AuthFailureEvent(payload=needed.failure_event_payload))
			await self._destroy()
			return AuthResult(state=self.state, restart=needed.restart)

		self._transition(AuthState.PAIRING_IN_PROGRESS)
		try:
			if self.linking_method.is_phone():
				await self._start_phone_pairing()
			else:
				await self._start_qr_pairing()

			# после сопряжения главный экран может грузиться сколько угодно долго
			await self.session.wait_for_selector(self.main_selector, None)
		except PageClosedDuringOperation:
			return self._pairing_interrupted()

		if self.session.closed:
			return self._pairing_interrupted()

		self._transition(AuthState.AUTHENTICATED)
		return AuthResult(state=self.state)

	def _pairing_interrupted(self) -> AuthResult:
		if self._pairing_error is not None:
			self._transition(AuthState.AUTH_FAILED)
			return AuthResult(state=self.state, error=self._pairing_error)
		self.logger.debug('🔐 Page closed while pairing, stopping quietly')
		return AuthResult(state=self.state, aborted=True)

	# region - pairing

	async def _start_qr_pairing(self) -> None:
		await self.session.expose_function('qrChanged', self._on_qr_changed)
		await self.session.evaluate(_QR_OBSERVER, selectors.QR_CONTAINER, selectors.QR_RETRY_BUTTON)

	async def _on_qr_changed(self, qr: str) -> None:
		if self._pairing_error is not None or self.session.closed:
			return
		self.logger.info('📱 New QR code received')
		self.event_bus.dispatch(QrReceivedEvent(qr=qr))

		max_retries = self.linking_method.qr.max_retries if self.linking_method.qr else 0
		if max_retries > 0:
			self.qr_retries += 1
			if self.qr_retries > max_retries:
				self._pairing_error = MaxPairingRetriesExceeded(max_retries)
				self.logger.warning(f'⚠️ QR code refreshed {self.qr_retries} times, giving up (max {max_retries})')
				self.event_bus.dispatch(DisconnectedEvent(reason=self._pairing_error.message))
				await self._destroy()

	async def _start_phone_pairing(self) -> None:
		assert self.linking_method.phone is not None
		number = self.linking_method.phone.number

		await self.session.expose_function('codeChanged', self._on_code_changed)

		await self.session.wait_for_selector(selectors.LINK_WITH_PHONE_BUTTON, None)
		await self.session.click(selectors.LINK_WITH_PHONE_BUTTON)

		await self.session.wait_for_selector(selectors.PHONE_NUMBER_INPUT, PHONE_INPUT_TIMEOUT_MS)
		current_value = await self.session.get_value(selectors.PHONE_NUMBER_INPUT) or ''
		await self.session.click(selectors.PHONE_NUMBER_INPUT)
		for _ in range(len(current_value)):
			await self.session.press('Backspace')
		await self.session.type_text(selectors.PHONE_NUMBER_INPUT, number)
		await self.session.click(selectors.NEXT_BUTTON)

		await self.session.evaluate(
			_PHONE_CODE_OBSERVER,
			selectors.CODE_CONTAINER,
			selectors.GENERATE_NEW_CODE_BUTTON,
			selectors.LINK_WITH_PHONE_VIEW,
		)

	async def _on_code_changed(self, code: str) -> None:
		if self.session.closed:
			return
		self.logger.info(f'📱 New pairing code received: {code}')
		self.event_bus.dispatch(PairingCodeReceivedEvent(code=code))

	# endregion

