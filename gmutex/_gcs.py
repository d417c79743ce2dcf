import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import aiohttp
from gcloud.aio.auth import Token

from ._backoff import Backoff
from ._base import Mutex
from ._exceptions import MalformedRequestError


logger = logging.getLogger(__name__)

DEFAULT_URL = 'https://www.googleapis.com'
SCOPES = [
    'https://www.googleapis.com/auth/devstorage.read_write',
]
BOUNDARY = 'cf58b63b6ce6f37881e9740f24be22d7'
TIME_FORMAT = '%Y-%d-%m %H:%M:%S.%f %Z'


class GCS(Mutex):
    """Mutex stored as an object in a Google Cloud Storage bucket.

    Args:
        bucket:     GCS bucket name.
        name:       Lock name, used as filename of lock in GCS.
        api_url:    URL of GCS API, helpful for testing with emulator.
        session:    HTTP session, created if not passed and closed on exit.
        token:      Auth token, Application Default Credentials if not passed.
        backoff:    Delays between failed attempts.
        sleep:      Coroutine used to wait between attempts.
        now:        Callback used to determine the current time.
        ttl:        How long to wait before the lock considered to be stale.
                    If None, stale locks are never broken.
        required:   If True, the mutex must be used at least once.
    """
    __slots__ = [
        'api_url',
        'session',
        'token',
        'emulator',
        'ttl',
        'now',
        'required',
        '_own_session',
    ]

    api_url: str
    session: aiohttp.ClientSession
    token: Optional[Token]
    emulator: bool
    ttl: Optional[timedelta]
    now: Callable[..., datetime]
    required: bool
    _own_session: bool

    transient_errors = (aiohttp.ClientError, asyncio.TimeoutError)

    def __init__(
        self,
        bucket: str,
        name: str,
        api_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        token: Optional[Token] = None,
        backoff: Optional[Backoff] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = datetime.now,
        ttl: Optional[timedelta] = None,
        required: bool = True,
    ) -> None:
        super().__init__(bucket=bucket, name=name, backoff=backoff, sleep=sleep)
        self.emulator = api_url is not None
        self.api_url = (api_url or DEFAULT_URL).rstrip('/')
        self.ttl = ttl
        self.now = now  # type: ignore
        self.required = required

        self._own_session = session is None
        if session is None:
            session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=not self.emulator),
                timeout=aiohttp.ClientTimeout(total=10),
            )
        self.session = session
        if token is None and not self.emulator:
            token = Token(scopes=SCOPES, session=session)  # type: ignore[arg-type]
        self.token = token

    async def _headers(self) -> Dict[str, str]:
        if self.token is None:
            return {}
        token = await self.token.get()
        return {
            'Authorization': f'Bearer {token}',
        }

    @property
    def _object_url(self) -> str:
        return f'{self.api_url}/storage/v1/b/{self.bucket}/o/{quote(self.name)}'

    async def acquire(self) -> int:
        self.required = False
        return await super().acquire()

    async def release(self) -> int:
        self.required = False
        return await super().release()

    async def acquired(self) -> bool:
        """Check if the mutex is already acquired (locked).

        Raises:
            ClientResponseError
            MalformedRequestError
        """
        self.required = False
        async with await self._get() as resp:
            if resp.status == HTTPStatus.NOT_FOUND:
                return False
            resp.raise_for_status()
            return True

    async def _try_acquire(self) -> bool:
        status = await self._create_status()
        if status == HTTPStatus.PRECONDITION_FAILED and self.ttl is not None:
            # Once a stale lock is removed, take its place without backing off.
            if await self._release_expired():
                status = await self._create_status()
        if status != HTTPStatus.OK:
            logger.debug('%s: create returned %d', self, status)
            return False
        return True

    async def _create_status(self) -> int:
        async with await self._create() as resp:
            return resp.status

    async def _try_release(self) -> bool:
        async with await self._delete() as resp:
            if resp.status == HTTPStatus.NOT_FOUND:
                logger.info('%s: lock object is already gone', self)
                return True
            if 200 <= resp.status < 300:
                return True
            logger.debug('%s: delete returned %d', self, resp.status)
            return False

    async def _release_expired(self) -> bool:
        """Release the lock if and only if the lock exists but expired.

        The delete is conditional on the generation that was checked,
        so a lock re-acquired in between is never removed.
        """
        async with await self._get() as resp:
            if resp.status == HTTPStatus.NOT_FOUND:
                return False
            resp.raise_for_status()
            content = await resp.json()
        raw = content.get('metadata', {}).get('expires')
        if raw is None:
            return False
        try:
            expires = datetime.strptime(raw, TIME_FORMAT)
        except ValueError:
            logger.warning('%s: cannot parse lock expiration %r', self, raw)
            return False
        expires = expires.replace(tzinfo=timezone.utc)
        now = self.now().astimezone(timezone.utc)
        if now < expires:
            return False

        async with await self._delete(generation=content['generation']) as resp:
            if resp.status in (HTTPStatus.NOT_FOUND, HTTPStatus.PRECONDITION_FAILED):
                return False
            resp.raise_for_status()
        logger.info('%s: broke a lock that expired at %s', self, expires)
        return True

    async def _request(self, method: str, url: str, **kwargs) -> aiohttp.ClientResponse:
        try:
            return await self.session.request(method, url, **kwargs)
        except aiohttp.InvalidURL as exc:
            raise MalformedRequestError(f'invalid lock URL: {exc}') from exc

    async def _create(self) -> aiohttp.ClientResponse:
        metadata: Dict[str, object] = dict(name=self.name)
        if self.ttl is not None:
            now = self.now().astimezone(timezone.utc)
            metadata['metadata'] = {
                'expires': (now + self.ttl).strftime(TIME_FORMAT),
            }
        body = '\r\n'.join([
            f'--{BOUNDARY}',
            'Content-Type: application/json; charset=UTF-8',
            '',
            json.dumps(metadata),
            f'--{BOUNDARY}',
            'Content-Type: text/plain',
            '',
            'lock',
            '',
            f'--{BOUNDARY}--',
            '',
        ]).encode('utf8')
        headers = await self._headers()
        headers.update({
            'Accept': 'application/json',
            'Content-Length': str(len(body)),
            'Content-Type': f'multipart/related; boundary={BOUNDARY}',
        })
        return await self._request(
            'POST',
            url=f'{self.api_url}/upload/storage/v1/b/{self.bucket}/o',
            data=body,
            params=dict(uploadType='multipart', ifGenerationMatch='0'),
            headers=headers,
        )

    async def _delete(self, generation: Optional[str] = None) -> aiohttp.ClientResponse:
        params = {}
        if generation is not None:
            params['ifGenerationMatch'] = str(generation)
        return await self._request(
            'DELETE',
            url=self._object_url,
            params=params,
            headers=await self._headers(),
        )

    async def _get(self) -> aiohttp.ClientResponse:
        return await self._request(
            'GET',
            url=self._object_url,
            headers=await self._headers(),
        )

    async def close(self) -> None:
        if self._own_session:
            await self.session.close()

    async def __aenter__(self) -> 'GCS':
        return self

    async def __aexit__(self, *args) -> None:
        # Check if the mutex is required but was never used.
        # It allows to catch the error when the user assumes that entering
        # the context automatically locks the mutex.
        #
        # If you see this error, you must either:
        #   * call `acquire`, `release`, or `acquired` at least once;
        #   * use `async with mutex.hold()` inside the context;
        #   * or pass `required=False` when creating the mutex.
        try:
            assert not self.required, 'lock is required but was not used'
        finally:
            await self.close()
