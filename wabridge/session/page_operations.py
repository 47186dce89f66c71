"""Page-level CDP operations - evaluation, host bindings, waits, DOM input."""

import asyncio
import base64
import json
from collections.abc import Awaitable, Callable, Coroutine
from typing import TYPE_CHECKING, Any

from wabridge.exceptions import NavigationError, PageClosedDuringOperation, RemoteOperationError
from wabridge.helpers import create_task_with_error_handling, is_target_closed_error

if TYPE_CHECKING:
    from wabridge.session.session import PageSession

# Единственный CDP binding, через который страница вызывает все функции хоста
BINDING_NAME = '__wabridgeBinding__'

_BINDING_BOOTSTRAP = '''
(() => {
    if (window.__wabridgeDeliver) return;
    const callbacks = new Map();
    let lastSeq = 0;
    window.__wabridgeCall = (name, args) => new Promise((resolve, reject) => {
        const seq = ++lastSeq;
        callbacks.set(seq, { resolve, reject });
        window.__BINDING__(JSON.stringify({ name, seq, args }));
    });
    window.__wabridgeDeliver = (seq, result, error) => {
        const callback = callbacks.get(seq);
        if (!callback) return;
        callbacks.delete(seq);
        if (error) callback.reject(new Error(error));
        else callback.resolve(result);
    };
})();
'''.replace('__BINDING__', BINDING_NAME)

_WAIT_FOR_SELECTOR = '''(selector, timeoutMs) => new Promise((resolve) => {
    if (document.querySelector(selector)) return resolve(true);
    let timer = null;
    const observer = new MutationObserver(() => {
        if (!document.querySelector(selector)) return;
        observer.disconnect();
        if (timer) clearTimeout(timer);
        resolve(true);
    });
    observer.observe(document.documentElement || document, { childList: true, subtree: true, attributes: true });
    if (timeoutMs) {
        timer = setTimeout(() => { observer.disconnect(); resolve(false); }, timeoutMs);
    }
})'''

# Клавиши, которые нужны при вводе в поля WhatsApp Web: (code, windowsVirtualKeyCode)
_KEY_DEFINITIONS: dict[str, tuple[str, int]] = {
    'Backspace': ('Backspace', 8),
    'Tab': ('Tab', 9),
    'Enter': ('Enter', 13),
    'Escape': ('Escape', 27),
    'Delete': ('Delete', 46),
    'ArrowLeft': ('ArrowLeft', 37),
    'ArrowUp': ('ArrowUp', 38),
    'ArrowRight': ('ArrowRight', 39),
    'ArrowDown': ('ArrowDown', 40),
    'Home': ('Home', 36),
    'End': ('End', 35),
    'Shift': ('ShiftLeft', 16),
    'Control': ('ControlLeft', 17),
    'Alt': ('AltLeft', 18),
    'Meta': ('MetaLeft', 91),
}
_MODIFIER_BITS = {'Alt': 1, 'Control': 2, 'Meta': 4, 'Shift': 8}

# Признаки категорий ошибок страницы, проверяются по порядку
_ERROR_CATEGORY_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ('not_allowed', ('[lt01]', 'only whatsapp business', 'not allowed', 'forbidden', 'status 403', 'code 403')),
    ('rate_limited', ('rate limit', 'rate-overlimit', 'too many', 'status 429', 'code 429')),
    ('privacy_restricted', ('privacy', 'not-authorized', 'not authorized', 'status 401', 'code 401')),
    ('not_found', ('not found', 'could not find', 'no such', 'notfound', 'status 404', 'code 404', 'item-not-found')),
    ('invalid', ('invalid', 'bad request', 'bad-request', 'status 400', 'code 400', 'malformed')),
)


def classify_page_error(name: str | None, message: str | None, status: int | None = None) -> str:
    """Вывести категорию ошибки страницы по имени, тексту и HTTP-подобному статусу."""
    if status is not None:
        status_categories = {400: 'invalid', 401: 'privacy_restricted', 403: 'not_allowed', 404: 'not_found', 429: 'rate_limited'}
        if status in status_categories:
            return status_categories[status]

    haystack = f'{name or ""} {message or ""}'.lower()
    for category, markers in _ERROR_CATEGORY_MARKERS:
        if any(marker in haystack for marker in markers):
            return category
    if (name or '') in ('TypeError', 'RangeError'):
        return 'invalid'
    return 'unknown'


def _is_function_source(source: str) -> bool:
    stripped = source.strip()
    return stripped.startswith(('function', 'async function', 'async (', 'async(')) or (
        stripped.startswith('(') and '=>' in stripped.split('{', 1)[0]
    ) or (stripped.split('=>', 1)[0].strip().isidentifier() and '=>' in stripped)


def remote_error_from_exception_details(exception_details: dict[str, Any]) -> RemoteOperationError:
    """Построить RemoteOperationError из Runtime.ExceptionDetails."""
    exception = exception_details.get('exception') or {}
    error_name = exception.get('className')
    description = exception.get('description') or exception.get('value') or exception_details.get('text') or 'Page error'
    message = str(description).split('\n    at ', 1)[0].strip()
    if error_name and message.startswith(f'{error_name}: '):
        message = message[len(error_name) + 2 :]

    status = None
    for preview_property in (exception.get('preview') or {}).get('properties') or []:
        if preview_property.get('name') in ('status', 'statusCode'):
            try:
                status = int(preview_property.get('value'))
            except (TypeError, ValueError):
                status = None

    category = classify_page_error(error_name, message, status)
    return RemoteOperationError(message, category=category, remote_name=error_name)


class PageOperationsManager:
    """Runs JavaScript in the WhatsApp tab and relays page-to-host calls."""

    def __init__(self, browser_session: 'PageSession'):
        self.browser_session = browser_session
        self.logger = browser_session.logger

        self._host_functions: dict[str, Callable[..., Any]] = {}
        self._binding_queue: asyncio.Queue[tuple[str, int, list[Any]]] = asyncio.Queue()
        self._binding_worker_task: asyncio.Task | None = None
        self._binding_installed = False
        self._load_waiters: list[asyncio.Future] = []

    # region - page calls

    async def guarded(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Await a CDP call, but give up as soon as the page session closes."""
        session = self.browser_session
        if session.closed:
            coro.close()
            raise PageClosedDuringOperation(during_teardown=session.tearing_down)

        call_task = asyncio.ensure_future(coro)
        closed_task = asyncio.ensure_future(session.closed_signal.wait())
        try:
            done, _ = await asyncio.wait({call_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_task.cancel()
            if not call_task.done():
                call_task.cancel()

        if call_task not in done:
            raise PageClosedDuringOperation(during_teardown=session.tearing_down)

        try:
            return call_task.result()
        except (PageClosedDuringOperation, RemoteOperationError):
            raise
        except Exception as e:
            if is_target_closed_error(e):
                raise PageClosedDuringOperation(str(e), during_teardown=session.tearing_down) from e
            raise

    async def evaluate(self, page_function: str, *args: Any) -> Any:
        """Evaluate a function (called with JSON args) or a plain expression in the page.

        Returns the value by JSON; page exceptions become RemoteOperationError.
        """
        if _is_function_source(page_function):
            json_args = ', '.join(json.dumps(arg) for arg in args)
            expression = f'({page_function})({json_args})'
        else:
            if args:
                raise ValueError('Arguments can only be passed to a function source, not to an expression')
            expression = page_function

        eval_result = await self.guarded(
            self.browser_session.cdp_client.send.Runtime.evaluate(
                params={'expression': expression, 'returnByValue': True, 'awaitPromise': True, 'userGesture': True},
                session_id=self.browser_session.session_id,
            )
        )

        if 'exceptionDetails' in eval_result:
            error = remote_error_from_exception_details(eval_result['exceptionDetails'])
            if is_target_closed_error(error):
                raise PageClosedDuringOperation(error.message, during_teardown=self.browser_session.tearing_down)
            raise error

        return eval_result.get('result', {}).get('value')

    async def run_script(self, source: str) -> None:
        """Evaluate a whole script as-is (bundles, IIFEs)."""
        eval_result = await self.guarded(
            self.browser_session.cdp_client.send.Runtime.evaluate(
                params={'expression': source, 'awaitPromise': True},
                session_id=self.browser_session.session_id,
            )
        )
        if 'exceptionDetails' in eval_result:
            raise remote_error_from_exception_details(eval_result['exceptionDetails'])

    async def add_init_script(self, source: str) -> str:
        """Register a script that runs before page scripts on every new document."""
        result = await self.guarded(
            self.browser_session.cdp_client.send.Page.addScriptToEvaluateOnNewDocument(
                params={'source': source, 'runImmediately': True},
                session_id=self.browser_session.session_id,
            )
        )
        return result['identifier']

    async def navigate(self, url: str, referer: str | None = None, timeout: float | None = None) -> None:
        """Navigate the tab and wait for the load event (no timeout by default)."""
        loop = asyncio.get_running_loop()
        load_waiter = loop.create_future()
        self._load_waiters.append(load_waiter)

        try:
            params: dict[str, Any] = {'url': url}
            if referer:
                params['referrer'] = referer
            try:
                nav_result = await self.guarded(
                    self.browser_session.cdp_client.send.Page.navigate(params=params, session_id=self.browser_session.session_id)
                )
            except PageClosedDuringOperation:
                raise
            except Exception as e:
                raise NavigationError(f'Navigation to {url} failed: {e}', url=url) from e

            if nav_result.get('errorText'):
                raise NavigationError(
                    f'Navigation to {url} failed: {nav_result["errorText"]}', url=url, error_text=nav_result['errorText']
                )

            try:
                await asyncio.wait_for(asyncio.shield(load_waiter), timeout=timeout)
            except TimeoutError as e:
                raise NavigationError(f'Navigation to {url} timed out after {timeout}s', url=url) from e
        finally:
            if load_waiter in self._load_waiters:
                self._load_waiters.remove(load_waiter)
            if not load_waiter.done():
                load_waiter.cancel()
            elif not load_waiter.cancelled():
                load_waiter.exception()

        self.logger.debug(f'🔗 Navigated to {url}')

    def on_load_event_fired(self, event: dict[str, Any], session_id: str | None = None) -> None:
        if session_id and session_id != self.browser_session.session_id:
            return
        for waiter in list(self._load_waiters):
            if not waiter.done():
                waiter.set_result(True)

    # endregion

    # region - waits

    async def wait_for_selector(self, selector: str, timeout_ms: int | None = None) -> bool:
        """Wait until `selector` matches; None or 0 waits forever. Raises TimeoutError."""
        while True:
            try:
                found = await self.evaluate(_WAIT_FOR_SELECTOR, selector, timeout_ms or 0)
            except PageClosedDuringOperation as e:
                if self._survived_context_reset(e):
                    await asyncio.sleep(0.1)
                    continue
                raise
            if not found:
                raise TimeoutError(f'Timeout {timeout_ms}ms exceeded waiting for selector {selector!r}')
            return True

    async def wait_for_function(self, expression: str, timeout_ms: int | None = None, polling_ms: int = 100) -> bool:
        """Wait until `expression` (or a function source) is truthy in the page. Raises TimeoutError."""
        check_source = f'({expression})()' if _is_function_source(expression) else f'({expression})'
        waiter_source = (
            '(timeoutMs, pollingMs) => new Promise((resolve) => {\n'
            '    const started = Date.now();\n'
            '    const check = async () => {\n'
            '        let value;\n'
            f'        try {{ value = await {check_source}; }} catch (e) {{ value = undefined; }}\n'
            '        if (value) return resolve(true);\n'
            '        if (timeoutMs && Date.now() - started >= timeoutMs) return resolve(false);\n'
            '        setTimeout(check, pollingMs);\n'
            '    };\n'
            '    check();\n'
            '})'
        )
        while True:
            try:
                ready = await self.evaluate(waiter_source, timeout_ms or 0, polling_ms)
            except PageClosedDuringOperation as e:
                if self._survived_context_reset(e):
                    await asyncio.sleep(0.1)
                    continue
                raise
            if not ready:
                raise TimeoutError(f'Timeout {timeout_ms}ms exceeded waiting for {expression!r}')
            return True

    def _survived_context_reset(self, error: PageClosedDuringOperation) -> bool:
        """A page navigation destroys the JS context but leaves the tab alive."""
        if self.browser_session.closed or error.during_teardown:
            return False
        message = str(error).lower()
        return ('context' in message and 'destroyed' in message) or 'cannot find context' in message

    # endregion

    # region - DOM input

    async def click(self, selector: str) -> None:
        await self.evaluate(
            '''(selector) => {
                const element = document.querySelector(selector);
                if (!element) throw new Error(`No element found for selector ${selector}`);
                element.scrollIntoView({ block: 'center' });
                element.click();
            }''',
            selector,
        )

    async def focus(self, selector: str) -> None:
        await self.evaluate(
            '''(selector) => {
                const element = document.querySelector(selector);
                if (!element) throw new Error(`No element found for selector ${selector}`);
                element.focus();
            }''',
            selector,
        )

    async def get_value(self, selector: str) -> str | None:
        return await self.evaluate(
            '(selector) => { const element = document.querySelector(selector); return element ? element.value : null; }',
            selector,
        )

    async def type_text(self, selector: str, text: str) -> None:
        """Focus `selector` and insert `text` as if typed."""
        await self.focus(selector)
        await self.guarded(
            self.browser_session.cdp_client.send.Input.insertText(params={'text': text}, session_id=self.browser_session.session_id)
        )

    async def press(self, key: str) -> None:
        """Press a key or a combination like 'Control+A' in the focused element."""
        key_parts = key.split('+') if len(key) > 1 else [key]
        modifier_keys, primary_key = key_parts[:-1], key_parts[-1]
        modifier_bitmask = 0
        for modifier_key in modifier_keys:
            modifier_bitmask |= _MODIFIER_BITS.get(modifier_key, 0)

        for modifier_key in modifier_keys:
            await self._dispatch_key('keyDown', modifier_key, 0)
        await self._dispatch_key('keyDown', primary_key, modifier_bitmask)
        await self._dispatch_key('keyUp', primary_key, modifier_bitmask)
        for modifier_key in reversed(modifier_keys):
            await self._dispatch_key('keyUp', modifier_key, 0)

    async def _dispatch_key(self, event_type: str, key: str, modifiers: int) -> None:
        code, virtual_key_code = _KEY_DEFINITIONS.get(key, (f'Key{key.upper()}' if len(key) == 1 and key.isalpha() else key, None))
        params: dict[str, Any] = {'type': event_type, 'key': key, 'code': code, 'modifiers': modifiers}
        if virtual_key_code is not None:
            params['windowsVirtualKeyCode'] = virtual_key_code
        await self.guarded(
            self.browser_session.cdp_client.send.Input.dispatchKeyEvent(params=params, session_id=self.browser_session.session_id)
        )

    async def screenshot(self) -> bytes:
        result = await self.guarded(
            self.browser_session.cdp_client.send.Page.captureScreenshot(
                params={'format': 'png'}, session_id=self.browser_session.session_id
            )
        )
        return base64.b64decode(result['data'])

    async def set_viewport(self, width: int, height: int) -> None:
        await self.guarded(
            self.browser_session.cdp_client.send.Emulation.setDeviceMetricsOverride(
                params={'width': width, 'height': height, 'deviceScaleFactor': 1.0, 'mobile': False},
                session_id=self.browser_session.session_id,
            )
        )

    # endregion

    # region - host functions

    async def expose_function(self, name: str, handler: Callable[..., Any | Awaitable[Any]]) -> None:
        """Make `window[name](...args)` call `handler` on the host and resolve with its return value."""
        replacing = name in self._host_functions
        self._host_functions[name] = handler
        if replacing:
            return

        await self._ensure_binding()
        shim = f'(() => {{ window[{json.dumps(name)}] = (...args) => window.__wabridgeCall({json.dumps(name)}, args); }})();'
        await self.add_init_script(shim)
        await self.evaluate(shim)
        self.logger.debug(f'🔌 Exposed host function window.{name}')

    async def _ensure_binding(self) -> None:
        if self._binding_installed:
            return
        await self.guarded(
            self.browser_session.cdp_client.send.Runtime.addBinding(
                params={'name': BINDING_NAME}, session_id=self.browser_session.session_id
            )
        )
        await self.add_init_script(_BINDING_BOOTSTRAP)
        await self.evaluate(_BINDING_BOOTSTRAP)
        self._binding_installed = True

    def on_binding_called(self, event: dict[str, Any], session_id: str | None = None) -> None:
        """Runtime.bindingCalled: enqueue the call, one consumer keeps page order."""
        if event.get('name') != BINDING_NAME:
            return
        if session_id and session_id != self.browser_session.session_id:
            return
        try:
            payload = json.loads(event.get('payload') or '{}')
        except json.JSONDecodeError:
            self.logger.warning(f'⚠️ Malformed binding payload: {event.get("payload")!r}')
            return

        self._binding_queue.put_nowait((payload.get('name', ''), payload.get('seq', 0), payload.get('args') or []))
        if self._binding_worker_task is None or self._binding_worker_task.done():
            self._binding_worker_task = create_task_with_error_handling(
                self._process_binding_calls(), name='binding_worker', logger_instance=self.logger
            )

    async def _process_binding_calls(self) -> None:
        while not self._binding_queue.empty():
            name, seq, args = await self._binding_queue.get()
            result, error_text = None, None
            handler = self._host_functions.get(name)
            try:
                if handler is None:
                    raise LookupError(f'No host function registered for {name!r}')
                result = handler(*args)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    result = await result
            except Exception as e:
                error_text = f'{type(e).__name__}: {e}'
                self.logger.error(f'❌ Host function {name} failed: {error_text}')
            finally:
                self._binding_queue.task_done()

            if self.browser_session.closed:
                continue
            try:
                await self.evaluate('(seq, result, error) => window.__wabridgeDeliver(seq, result, error)', seq, result, error_text)
            except (PageClosedDuringOperation, RemoteOperationError, TypeError) as e:
                self.logger.debug(f'Could not deliver result of {name}#{seq}: {type(e).__name__}: {e}')

    # endregion

    def close(self) -> None:
        """Fail pending waits and stop the binding worker."""
        for waiter in self._load_waiters:
            if not waiter.done():
                waiter.set_exception(PageClosedDuringOperation(during_teardown=self.browser_session.tearing_down))
        self._load_waiters.clear()

        worker = self._binding_worker_task
        # Teardown may be triggered from inside a host function, then the worker finishes on its own
        if worker and not worker.done() and worker is not asyncio.current_task():
            worker.cancel()
        self._binding_worker_task = None
