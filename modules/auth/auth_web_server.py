"""
Auth 모듈의 OAuth2 로그인 웹서버

인가 시작, provider 콜백, 상태 확인 엔드포인트를 제공하는 aiohttp 어댑터입니다.

    GET {auth_login_url_prefix}/{provider_id}?state=&redirect=
    GET {redirect_url_prefix}/{provider_id}?code=&state=
    GET /health

모든 응답에는 X-Request-Id 헤더로 요청 추적 id 가 붙습니다.
"""

import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from aiohttp import web

from infra.core.config import Config, get_config
from infra.core.exceptions import Auth2Error
from infra.core.logger import get_logger, request_id_context

from modules.account.account_schema import LocalIdentity

from ._auth_helpers import (
    auth_error_status,
    auth_outcome_payload,
    auth_outcome_redirect,
    auth_request_id,
)
from .auth_initiator import AuthorizationInitiator
from .auth_schema import TemporaryLogin
from .callback_processor import CallbackProcessor

logger = get_logger(__name__)

# 요청에서 현재 로그인한 사용자를 찾는 함수 (계정 연결용)
IdentityResolver = Callable[[web.Request], Awaitable[Optional[LocalIdentity]]]

REQUEST_ID_HEADER = "X-Request-Id"


@web.middleware
async def request_id_middleware(request: web.Request, handler):
    """
    요청마다 추적 id 를 정해 로그에 붙이고 응답 헤더로 돌려줍니다.

    클라이언트가 보낸 X-Request-Id 가 올바르면 그대로 사용합니다.
    """
    request_id = auth_request_id(request.headers.get(REQUEST_ID_HEADER)) or uuid.uuid4().hex
    with request_id_context(request_id):
        try:
            response = await handler(request)
        except web.HTTPException as e:
            e.headers[REQUEST_ID_HEADER] = request_id
            raise
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


class AuthWebServer:
    """OAuth2 로그인 웹서버"""

    def __init__(
        self,
        initiator: AuthorizationInitiator,
        callback_processor: CallbackProcessor,
        config: Optional[Config] = None,
        identity_resolver: Optional[IdentityResolver] = None,
    ):
        self.initiator = initiator
        self.callback_processor = callback_processor
        self.config = config or get_config()
        self.identity_resolver = identity_resolver

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self.is_running = False

    def create_app(self) -> web.Application:
        """라우트가 설정된 aiohttp 애플리케이션 생성"""
        app = web.Application(middlewares=[request_id_middleware])
        app.router.add_get(
            f"{self.config.auth_login_url_prefix}/{{provider_id}}", self._handle_authorize
        )
        app.router.add_get(
            f"{self.config.redirect_url_prefix}/{{provider_id}}", self._handle_callback
        )
        app.router.add_get("/health", self._handle_health_check)
        return app

    async def start(self, host: str = "0.0.0.0", port: int = 5000) -> str:
        """
        웹서버를 시작합니다.

        Returns:
            서버 URL
        """
        self.app = self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, host, port)
        await self.site.start()

        self.is_running = True
        server_url = f"http://{host}:{port}"
        logger.info(f"🚀 OAuth2 로그인 웹서버 시작됨: {server_url}")
        return server_url

    async def stop(self) -> None:
        """웹서버를 중지합니다."""
        self.is_running = False
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        self.app = None
        logger.info("OAuth2 로그인 웹서버 중지됨")

    async def _handle_authorize(self, request: web.Request) -> web.Response:
        """인가 시작 요청 처리 → provider 인가 페이지로 302"""
        provider_id = request.match_info["provider_id"]
        params = {}
        if request.query.get("redirect"):
            params["redirect"] = request.query["redirect"]

        try:
            redirect = await self.initiator.initiate(
                provider_id, state=request.query.get("state"), params=params
            )
        except Auth2Error as e:
            return self._error_response(e)

        raise web.HTTPFound(redirect.url)

    async def _handle_callback(self, request: web.Request) -> web.Response:
        """provider 콜백 처리"""
        provider_id = request.match_info["provider_id"]
        logger.debug(f"[{provider_id}] 콜백 수신: {list(request.query.keys())}")

        current_identity = None
        if self.identity_resolver is not None:
            current_identity = await self.identity_resolver(request)

        try:
            outcome = await self.callback_processor.process(
                provider_id, dict(request.query), current_identity=current_identity
            )
        except Auth2Error as e:
            return self._error_response(e)

        if isinstance(outcome, TemporaryLogin) and self.config.sign_up_url:
            raise web.HTTPFound(self.config.sign_up_url)

        target = auth_outcome_redirect(outcome)
        if target:
            raise web.HTTPFound(target)

        return web.json_response(auth_outcome_payload(outcome))

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        """서버 상태 확인 엔드포인트"""
        return web.json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server": "oauth2_login_server",
        })

    def _error_response(self, error: Auth2Error) -> web.Response:
        status = auth_error_status(error)
        if status >= 500:
            logger.error(f"요청 처리 실패: {error}")
        return web.json_response(error.to_dict(), status=status)
