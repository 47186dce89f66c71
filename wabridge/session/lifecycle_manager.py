"""Session lifecycle management - browser start, stop, connect, page setup."""

import base64
from typing import TYPE_CHECKING, Any, Self, cast
from urllib.parse import urlparse, urlunparse

import httpx
from cdp_use import CDPClient
from cdp_use.cdp.fetch import AuthRequiredEvent, RequestPausedEvent
from cdp_use.cdp.target import SessionID

from wabridge.config import DEFAULT_USER_AGENT, WHATSAPP_WEB_URL
from wabridge.exceptions import BrowserLaunchError
from wabridge.helpers import create_task_with_error_handling
from wabridge.session.events import (
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserLaunchEvent,
    BrowserLaunchResult,
    BrowserStartEvent,
    BrowserStopEvent,
    BrowserStoppedEvent,
    FrameNavigatedEvent,
)

if TYPE_CHECKING:
    from wabridge.session.session import PageSession


class SessionLifecycleManager:
    """Manages page session lifecycle: launch, connection, page setup, shutdown."""

    def __init__(self, browser_session: 'PageSession'):
        self.browser_session = browser_session
        self.logger = browser_session.logger

        # requestId документа WhatsApp Web, тело которого нужно сохранить в кеш версий
        self._document_request_id: str | None = None

    async def start(self) -> None:
        """Start the page session, raising BrowserLaunchError on any failure."""
        start_event = self.browser_session.event_bus.dispatch(BrowserStartEvent(cdp_url=self.browser_session.cdp_url))
        try:
            await start_event
            await start_event.event_result(raise_if_any=True, raise_if_none=False)
        except BrowserLaunchError:
            raise
        except Exception as e:
            raise BrowserLaunchError(
                f'Failed to start browser: {type(e).__name__}: {e}', cdp_url=self.browser_session.cdp_url
            ) from e

    async def reset(self) -> None:
        """Release the CDP client and forget the attached page."""
        connection_status = 'connected' if self.browser_session._cdp_client_root else 'not connected'
        self.logger.debug(f'🔄 Resetting page session (CDP: {connection_status}, target: {self.browser_session.target_id})')

        self.browser_session._page_operations.close()

        if self.browser_session._cdp_client_root:
            try:
                await self.browser_session._cdp_client_root.stop()
                self.logger.debug('Closed CDP client WebSocket during reset')
            except Exception as e:
                self.logger.debug(f'Error closing CDP client during reset: {e}')

        self.browser_session._cdp_client_root = None
        self.browser_session._target_id = None
        self.browser_session._session_id = None
        self._document_request_id = None

        if self.browser_session.is_local:
            self.browser_session.browser_profile.cdp_url = None

        self.logger.debug('✅ Page session reset complete')

    async def on_BrowserStartEvent(self, event: BrowserStartEvent) -> dict[str, str]:
        """Launch a local browser if needed, then connect and prepare the WhatsApp tab."""
        self.attach_all_watchdogs()

        try:
            if not self.browser_session.cdp_url:
                if not self.browser_session.is_local:
                    raise BrowserLaunchError('Got PageSession(is_local=False) but no cdp_url was provided to connect to!')

                launch_event = self.browser_session.event_bus.dispatch(BrowserLaunchEvent())
                await launch_event
                launch_result = cast(
                    BrowserLaunchResult, await launch_event.event_result(raise_if_none=True, raise_if_any=True)
                )
                self.browser_session.browser_profile.cdp_url = launch_result.cdp_url

            assert self.browser_session.cdp_url and '://' in self.browser_session.cdp_url

            async with self.browser_session._connection_lock:
                if self.browser_session._cdp_client_root is None:
                    await self.connect(cdp_url=self.browser_session.cdp_url)
                    self.browser_session.event_bus.dispatch(BrowserConnectedEvent(cdp_url=self.browser_session.cdp_url))
                else:
                    self.logger.debug('Already connected to CDP, skipping reconnect')

            return {'cdp_url': self.browser_session.cdp_url}

        except Exception as e:
            self.browser_session.event_bus.dispatch(
                BrowserErrorEvent(
                    error_type='BrowserStartEventError',
                    message=f'Failed to start browser: {type(e).__name__} {e}',
                    details={'cdp_url': self.browser_session.cdp_url, 'is_local': self.browser_session.is_local},
                )
            )
            raise

    async def on_BrowserStopEvent(self, event: BrowserStopEvent) -> None:
        """Release the connection, the local browser watchdog kills the process."""
        try:
            self.logger.debug(f'📢 on_BrowserStopEvent - Calling reset() (force={event.force})')
            await self.reset()
            self.browser_session.event_bus.dispatch(BrowserStoppedEvent(reason='Stopped by request'))
        except Exception as e:
            self.browser_session.event_bus.dispatch(
                BrowserErrorEvent(
                    error_type='BrowserStopEventError',
                    message=f'Failed to stop browser: {type(e).__name__} {e}',
                    details={'cdp_url': self.browser_session.cdp_url, 'is_local': self.browser_session.is_local},
                )
            )

    def attach_all_watchdogs(self) -> None:
        """Create and attach the watchdogs this session needs."""
        if self.browser_session._watchdogs_attached:
            self.logger.debug('Watchdogs already attached, skipping duplicate attachment')
            return

        if self.browser_session.is_local:
            from wabridge.session.monitors.watchdogs.local_browser_watchdog import LocalBrowserWatchdog

            LocalBrowserWatchdog.model_rebuild()
            self.browser_session._local_browser_watchdog = LocalBrowserWatchdog(
                event_bus=self.browser_session.event_bus, browser_session=self.browser_session
            )
            self.browser_session._local_browser_watchdog.attach_to_session()

        self.browser_session._watchdogs_attached = True

    async def connect(self, cdp_url: str | None = None) -> Self:
        """Connect to a chromium-based browser via CDP and attach to its first page."""
        self.browser_session.browser_profile.cdp_url = cdp_url or self.browser_session.cdp_url
        if not self.browser_session.cdp_url:
            raise BrowserLaunchError('Cannot setup CDP connection without CDP URL')

        if not self.browser_session.cdp_url.startswith('ws'):
            parsed_url = urlparse(self.browser_session.cdp_url)
            path = parsed_url.path.rstrip('/')
            if not path.endswith('/json/version'):
                path = path + '/json/version'
            url = urlunparse((parsed_url.scheme, parsed_url.netloc, path, parsed_url.params, parsed_url.query, parsed_url.fragment))

            async with httpx.AsyncClient() as client:
                headers = self.browser_session.browser_profile.headers or {}
                version_info = await client.get(url, headers=headers)
                self.logger.debug(f'Raw version info: {version_info}')
                self.browser_session.browser_profile.cdp_url = version_info.json()['webSocketDebuggerUrl']

        browser_location = 'local browser' if self.browser_session.is_local else 'remote browser'
        self.logger.debug(f'🌎 Connecting to chromium-based browser via CDP: {self.browser_session.cdp_url} -> ({browser_location})')

        try:
            self.browser_session._cdp_client_root = CDPClient(
                self.browser_session.cdp_url,
                additional_headers=self.browser_session.browser_profile.headers,
                max_ws_frame_size=200 * 1024 * 1024,
            )
            await self.browser_session._cdp_client_root.start()

            await self._attach_to_page()
            self._register_page_handlers()
            await self._setup_page()
            await self._setup_request_interception()
        except Exception as e:
            self.logger.error(f'❌ FATAL: Failed to setup CDP connection: {e}')

            if self.browser_session._cdp_client_root:
                try:
                    await self.browser_session._cdp_client_root.stop()
                    self.logger.debug('Closed CDP client WebSocket after initialization failure')
                except Exception as cleanup_error:
                    self.logger.debug(f'Error closing CDP client: {cleanup_error}')

            self.browser_session._cdp_client_root = None
            self.browser_session._target_id = None
            self.browser_session._session_id = None
            if isinstance(e, BrowserLaunchError):
                raise
            raise BrowserLaunchError(f'Failed to establish CDP connection to browser: {e}', cdp_url=cdp_url) from e

        return self

    async def _attach_to_page(self) -> None:
        """Attach to the first page target, creating a blank one if the browser has none."""
        cdp_client = self.browser_session.cdp_client

        targets = await cdp_client.send.Target.getTargets()
        page_targets = [target for target in targets.get('targetInfos', []) if target.get('type') == 'page']
        if page_targets:
            target_id = page_targets[0]['targetId']
            self.logger.debug(f'📄 Using existing page: {target_id}')
        else:
            new_target = await cdp_client.send.Target.createTarget(params={'url': 'about:blank'})
            target_id = new_target['targetId']
            self.logger.debug(f'📄 Created new blank page: {target_id}')

        attach_result = await cdp_client.send.Target.attachToTarget(params={'targetId': target_id, 'flatten': True})
        self.browser_session._target_id = target_id
        self.browser_session._session_id = attach_result['sessionId']

        session_id = self.browser_session.session_id
        await cdp_client.send.Page.enable(session_id=session_id)
        await cdp_client.send.Runtime.enable(session_id=session_id)

    def _register_page_handlers(self) -> None:
        cdp_client = self.browser_session.cdp_client
        page_operations = self.browser_session._page_operations

        cdp_client.register.Page.loadEventFired(page_operations.on_load_event_fired)
        cdp_client.register.Page.frameNavigated(self._on_frame_navigated)
        cdp_client.register.Runtime.bindingCalled(page_operations.on_binding_called)
        cdp_client.register.Target.detachedFromTarget(self._on_detached_from_target)

    def _on_frame_navigated(self, event: dict[str, Any], session_id: SessionID | None = None) -> None:
        if session_id and session_id != self.browser_session.session_id:
            return
        frame = event.get('frame') or {}
        # Только главный фрейм: у него нет parentId
        if frame.get('parentId'):
            return
        url = frame.get('url', '') + frame.get('urlFragment', '')
        self.logger.debug(f'🧭 Main frame navigated to {url}')
        self.browser_session.event_bus.dispatch(FrameNavigatedEvent(url=url))

    def _on_detached_from_target(self, event: dict[str, Any], session_id: SessionID | None = None) -> None:
        if event.get('sessionId') != self.browser_session.session_id:
            return
        self.logger.warning('⚠️ WhatsApp page target detached')
        self.browser_session.mark_page_closed()

    async def _setup_page(self) -> None:
        """Apply user agent, CSP bypass and viewport to the attached page."""
        cdp_client = self.browser_session.cdp_client
        session_id = self.browser_session.session_id
        profile = self.browser_session.browser_profile

        user_agent = self.browser_session.user_agent or profile.user_agent or DEFAULT_USER_AGENT
        await cdp_client.send.Emulation.setUserAgentOverride(params={'userAgent': user_agent}, session_id=session_id)

        if self.browser_session.bypass_csp:
            await cdp_client.send.Page.setBypassCSP(params={'enabled': True}, session_id=session_id)

        await cdp_client.send.Emulation.setDeviceMetricsOverride(
            params={
                'width': profile.viewport.width,
                'height': profile.viewport.height,
                'deviceScaleFactor': 1.0,
                'mobile': False,
            },
            session_id=session_id,
        )

    async def _setup_request_interception(self) -> None:
        """Enable CDP Fetch for proxy credentials and for serving a cached WhatsApp Web version."""
        cdp_client = self.browser_session.cdp_client
        session_id = self.browser_session.session_id

        proxy_cfg = self.browser_session.browser_profile.proxy
        username = proxy_cfg.username if proxy_cfg else None
        password = proxy_cfg.password if proxy_cfg else None
        has_credentials = bool(username and password)

        web_cache = self.browser_session.web_cache
        web_version = self.browser_session.web_version
        cached_html: str | None = None
        if web_cache is not None and web_version:
            cached_html = await web_cache.resolve(web_version)
            if cached_html is not None:
                self.logger.info(f'📦 Serving WhatsApp Web {web_version} from the version cache')

        patterns: list[dict[str, Any]] = []
        if has_credentials:
            patterns.append({'urlPattern': '*'})
        elif cached_html is not None:
            patterns.append({'urlPattern': WHATSAPP_WEB_URL, 'requestStage': 'Request'})

        if patterns:
            cdp_client.register.Fetch.authRequired(self._make_auth_handler(username, password))
            cdp_client.register.Fetch.requestPaused(self._make_request_paused_handler(cached_html))
            await cdp_client.send.Fetch.enable(
                params={'patterns': patterns, 'handleAuthRequests': has_credentials}, session_id=session_id
            )
            self.logger.debug(f'Fetch.enable(handleAuthRequests={has_credentials}, patterns={patterns})')

        if web_cache is not None and cached_html is None:
            # Живая версия: сохраняем загруженный index.html в кеш
            await cdp_client.send.Network.enable(session_id=session_id)
            cdp_client.register.Network.responseReceived(self._on_response_received)
            cdp_client.register.Network.loadingFinished(self._on_loading_finished)

    def _make_auth_handler(self, username: str | None, password: str | None):
        def _on_auth_required(event: AuthRequiredEvent, session_id: SessionID | None = None):
            request_id = event.get('requestId')
            if not request_id:
                return

            challenge = event.get('authChallenge') or {}
            if (challenge.get('source') or '').lower() == 'proxy' and username and password:
                auth_response = {'response': 'ProvideCredentials', 'username': username, 'password': password}
            else:
                auth_response = {'response': 'Default'}

            async def _respond():
                await self.browser_session.cdp_client.send.Fetch.continueWithAuth(
                    params={'requestId': request_id, 'authChallengeResponse': auth_response},
                    session_id=session_id,
                )

            create_task_with_error_handling(_respond(), name='auth_respond', logger_instance=self.logger, suppress_exceptions=True)

        return _on_auth_required

    def _make_request_paused_handler(self, cached_html: str | None):
        def _on_request_paused(event: RequestPausedEvent, session_id: SessionID | None = None):
            request_id = event.get('requestId')
            if not request_id:
                return
            request_url = (event.get('request') or {}).get('url', '')

            async def _serve_cached():
                assert cached_html is not None
                await self.browser_session.cdp_client.send.Fetch.fulfillRequest(
                    params={
                        'requestId': request_id,
                        'responseCode': 200,
                        'responseHeaders': [{'name': 'Content-Type', 'value': 'text/html'}],
                        'body': base64.b64encode(cached_html.encode('utf-8')).decode('ascii'),
                    },
                    session_id=session_id,
                )

            async def _continue():
                await self.browser_session.cdp_client.send.Fetch.continueRequest(
                    params={'requestId': request_id}, session_id=session_id
                )

            if cached_html is not None and request_url == WHATSAPP_WEB_URL:
                create_task_with_error_handling(
                    _serve_cached(), name='serve_cached_version', logger_instance=self.logger, suppress_exceptions=True
                )
            else:
                create_task_with_error_handling(
                    _continue(), name='request_continue', logger_instance=self.logger, suppress_exceptions=True
                )

        return _on_request_paused

    def _on_response_received(self, event: dict[str, Any], session_id: SessionID | None = None) -> None:
        response = event.get('response') or {}
        status = response.get('status') or 0
        if response.get('url') == WHATSAPP_WEB_URL and 200 <= status < 300:
            self._document_request_id = event.get('requestId')

    def _on_loading_finished(self, event: dict[str, Any], session_id: SessionID | None = None) -> None:
        request_id = event.get('requestId')
        if not request_id or request_id != self._document_request_id:
            return
        self._document_request_id = None

        async def _persist():
            body = await self.browser_session.cdp_client.send.Network.getResponseBody(
                params={'requestId': request_id}, session_id=session_id
            )
            index_html = body.get('body', '')
            if body.get('base64Encoded'):
                index_html = base64.b64decode(index_html).decode('utf-8', errors='replace')
            web_cache = self.browser_session.web_cache
            if web_cache is not None:
                await web_cache.persist(index_html)

        create_task_with_error_handling(_persist(), name='persist_web_version', logger_instance=self.logger)
