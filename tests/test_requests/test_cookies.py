"""Tests for reqdoll.requests.cookies module."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from reqdoll.protocol.network.types import CookieSameSite
from reqdoll.requests.cookies import (
    CookieEntry,
    CookieSynchronizer,
    MemoryCookieStore,
    SessionCookieStore,
    default_path,
    parse_set_cookie,
    path_matches,
)


@pytest.fixture
def synchronizer():
    return CookieSynchronizer(MemoryCookieStore('test-scope'))


class TestParseSetCookie:
    """Tests for Set-Cookie header parsing."""

    def test_host_only_cookie_defaults(self):
        entry = parse_set_cookie('sid=abc', 'https://example.com/account/login')
        assert entry == CookieEntry(name='sid', value='abc', domain='example.com', path='/account')
        assert entry.is_session
        assert entry.same_site == CookieSameSite.LAX

    def test_domain_attribute_creates_domain_cookie(self):
        entry = parse_set_cookie(
            'session=abc; Domain=example.com; Path=/', 'https://www.example.com/login'
        )
        assert entry.domain == '.example.com'
        assert entry.path == '/'

    def test_leading_dot_in_domain_attribute_is_ignored(self):
        entry = parse_set_cookie('a=1; Domain=.example.com', 'https://example.com/')
        assert entry.domain == '.example.com'

    def test_foreign_domain_is_rejected(self):
        assert parse_set_cookie('a=1; Domain=other.com', 'https://example.com/') is None

    def test_secure_cookie_over_http_is_rejected(self):
        assert parse_set_cookie('a=1; Secure', 'http://example.com/') is None

    @pytest.mark.parametrize(
        'url',
        ['http://localhost:3000/', 'http://app.localhost/', 'http://127.0.0.1:8080/'],
    )
    def test_secure_cookie_over_loopback_http_is_kept(self, url):
        entry = parse_set_cookie('a=1; Secure', url)
        assert entry is not None
        assert entry.secure is True
        assert entry.matches(url)

    @pytest.mark.parametrize(
        'header, url',
        [
            ('sid=abc; Domain=com; Path=/', 'https://example.com/'),
            ('sid=abc; Domain=.com', 'https://www.example.com/'),
            ('sid=abc; Domain=co.uk', 'https://shop.example.co.uk/'),
            ('sid=abc; Domain=0.1', 'http://127.0.0.1/'),
        ],
    )
    def test_top_level_and_registry_domains_are_rejected(self, header, url):
        assert parse_set_cookie(header, url) is None

    def test_domain_equal_to_single_label_host_is_host_only(self):
        entry = parse_set_cookie('a=1; Domain=localhost', 'http://localhost:8000/')
        assert entry.domain == 'localhost'
        assert not entry.matches('http://api.localhost:8000/')

    def test_domain_equal_to_ip_host_is_host_only(self):
        entry = parse_set_cookie('a=1; Domain=127.0.0.1', 'http://127.0.0.1/')
        assert entry.domain == '127.0.0.1'


    def test_flags_are_parsed(self):
        entry = parse_set_cookie(
            'a=1; Secure; HttpOnly; SameSite=Strict', 'https://example.com/'
        )
        assert entry.secure is True
        assert entry.http_only is True
        assert entry.same_site == CookieSameSite.STRICT

    def test_samesite_none(self):
        entry = parse_set_cookie('a=1; Secure; SameSite=none', 'https://example.com/')
        assert entry.same_site == CookieSameSite.NONE

    def test_expires_attribute(self):
        entry = parse_set_cookie(
            'a=1; Expires=Wed, 21 Oct 2015 07:28:00 GMT', 'https://example.com/'
        )
        expected = datetime(2015, 10, 21, 7, 28, tzinfo=timezone.utc).timestamp()
        assert entry.expires == expected

    def test_max_age_takes_precedence_over_expires(self):
        entry = parse_set_cookie(
            'a=1; Expires=Wed, 21 Oct 2015 07:28:00 GMT; Max-Age=60',
            'https://example.com/',
            now=1000.0,
        )
        assert entry.expires == 1060.0

    def test_non_positive_max_age_marks_cookie_expired(self):
        entry = parse_set_cookie('a=1; Max-Age=0', 'https://example.com/', now=1000.0)
        assert entry.is_expired(1000.0)

    def test_value_may_contain_equals(self):
        entry = parse_set_cookie('token=a=b=c; Path=/', 'https://example.com/')
        assert entry.value == 'a=b=c'

    @pytest.mark.parametrize('header', ['novalue', '=value', '  ; Path=/'])
    def test_malformed_headers_are_ignored(self, header):
        assert parse_set_cookie(header, 'https://example.com/') is None

    def test_relative_path_attribute_falls_back_to_default_path(self):
        entry = parse_set_cookie('a=1; Path=relative', 'https://example.com/docs/page')
        assert entry.path == '/docs'


class TestCookieMatching:
    """Tests for cookie eligibility rules."""

    def test_domain_cookie_matches_subdomains(self):
        cookie = CookieEntry(name='a', value='1', domain='.example.com')
        assert cookie.matches('https://example.com/')
        assert cookie.matches('https://api.example.com/v1')
        assert not cookie.matches('https://notexample.com/')

    def test_host_only_cookie_does_not_match_subdomains(self):
        cookie = CookieEntry(name='a', value='1', domain='example.com')
        assert cookie.matches('https://example.com/')
        assert not cookie.matches('https://api.example.com/')

    @pytest.mark.parametrize(
        'request_path, cookie_path, expected',
        [
            ('/api', '/api', True),
            ('/api/users', '/api', True),
            ('/api/users', '/api/', True),
            ('/apiv2', '/api', False),
            ('/', '/api', False),
            ('/anything', '/', True),
        ],
    )
    def test_path_matching(self, request_path, cookie_path, expected):
        assert path_matches(request_path, cookie_path) is expected

    def test_secure_cookie_requires_https(self):
        cookie = CookieEntry(name='a', value='1', domain='example.com', secure=True)
        assert cookie.matches('https://example.com/')
        assert not cookie.matches('http://example.com/')

    def test_expired_cookie_never_matches(self):
        cookie = CookieEntry(name='a', value='1', domain='example.com', expires=10.0)
        assert not cookie.matches('https://example.com/', now=20.0)
        assert cookie.matches('https://example.com/', now=5.0)

    @pytest.mark.parametrize(
        'path, expected',
        [('', '/'), ('/', '/'), ('/login', '/'), ('/a/b/c', '/a/b'), ('/a/', '/a')],
    )
    def test_default_path(self, path, expected):
        assert default_path(path) == expected


class TestCookieEntryConversion:
    """Tests for dictionary conversion of cookie entries."""

    def test_session_cookie_uses_minus_one_expires(self):
        cookie = CookieEntry(name='a', value='1', domain='example.com').to_cookie()
        assert cookie['expires'] == -1
        assert CookieEntry.from_cookie(cookie).expires is None

    def test_param_omits_expires_for_session_cookie(self):
        param = CookieEntry(name='a', value='1', domain='example.com').to_param()
        assert 'expires' not in param

    def test_from_cookie_applies_defaults(self):
        entry = CookieEntry.from_cookie({'name': 'a', 'value': '1', 'domain': 'example.com'})
        assert entry.path == '/'
        assert entry.same_site == CookieSameSite.LAX
        assert entry.http_only is False

    def test_from_cookie_rejects_unknown_same_site(self):
        with pytest.raises(ValueError):
            CookieEntry.from_cookie(
                {'name': 'a', 'value': '1', 'domain': 'example.com', 'sameSite': 'Sometimes'}
            )

    def test_from_cookie_requires_name(self):
        with pytest.raises(KeyError):
            CookieEntry.from_cookie({'value': '1', 'domain': 'example.com'})


class TestCookieSynchronizer:
    """Tests for CookieSynchronizer."""

    @pytest.mark.asyncio
    async def test_merge_then_cookies_for(self, synchronizer):
        await synchronizer.merge(
            'https://example.com/login', ['session=abc; Domain=example.com; Path=/']
        )
        cookies = await synchronizer.cookies_for('https://example.com/profile')
        assert [(c.name, c.value) for c in cookies] == [('session', 'abc')]
        assert await synchronizer.cookies_for('https://other.com/') == []

    @pytest.mark.asyncio
    async def test_same_key_replaces_previous_value(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['a=1; Path=/'])
        await synchronizer.merge('https://example.com/', ['a=2; Path=/'])
        assert await synchronizer.cookie_header('https://example.com/') == 'a=2'

    @pytest.mark.asyncio
    async def test_headers_apply_in_arrival_order(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['a=1; Path=/', 'a=2; Path=/'])
        assert await synchronizer.cookie_header('https://example.com/') == 'a=2'

    @pytest.mark.asyncio
    async def test_different_paths_are_distinct_cookies(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['a=root; Path=/', 'a=api; Path=/api'])
        assert await synchronizer.cookie_header('https://example.com/api/x') == 'a=api; a=root'
        assert await synchronizer.cookie_header('https://example.com/other') == 'a=root'

    @pytest.mark.asyncio
    async def test_expired_cookie_deletes_entry(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['a=1; Path=/', 'b=2; Path=/'])
        await synchronizer.merge('https://example.com/', ['a=gone; Path=/; Max-Age=0'])
        assert await synchronizer.cookie_header('https://example.com/') == 'b=2'

    @pytest.mark.asyncio
    async def test_past_expires_deletes_entry(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['a=1; Path=/'])
        await synchronizer.merge(
            'https://example.com/', ['a=; Path=/; Expires=Thu, 01 Jan 1970 00:00:00 GMT']
        )
        assert await synchronizer.all_cookies() == []

    @pytest.mark.asyncio
    async def test_explicit_cookie_header_wins_per_name(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['a=1; Path=/', 'b=2; Path=/'])
        header = await synchronizer.cookie_header('https://example.com/', 'a=override; c=3')
        assert header == 'a=override; c=3; b=2'

    @pytest.mark.asyncio
    async def test_no_cookies_yields_none(self, synchronizer):
        assert await synchronizer.cookie_header('https://example.com/') is None

    @pytest.mark.asyncio
    async def test_rejected_cookies_are_not_stored(self, synchronizer):
        applied = await synchronizer.merge('https://example.com/', ['a=1; Domain=evil.com'])
        assert applied == []
        assert await synchronizer.all_cookies() == []

    @pytest.mark.asyncio
    async def test_top_level_domain_cookie_never_reaches_other_sites(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['sid=abc; Domain=com; Path=/'])
        assert await synchronizer.cookie_header('https://other.com/') is None
        assert await synchronizer.cookie_header('https://example.com/') is None

    @pytest.mark.asyncio
    async def test_clear_removes_everything(self, synchronizer):
        await synchronizer.merge('https://example.com/', ['a=1', 'b=2'])
        await synchronizer.clear()
        assert await synchronizer.all_cookies() == []

    def test_scope_id_comes_from_store(self, synchronizer):
        assert synchronizer.scope_id == 'test-scope'


class TestMemoryCookieStore:
    """Tests for the private in-memory jar."""

    def test_generated_scope_ids_are_unique(self):
        assert MemoryCookieStore().scope_id != MemoryCookieStore().scope_id

    @pytest.mark.asyncio
    async def test_put_and_remove(self):
        store = MemoryCookieStore()
        entry = CookieEntry(name='a', value='1', domain='example.com')
        await store.put([entry])
        assert len(store) == 1
        await store.remove([entry.key, ('missing', 'example.com', '/')])
        assert await store.all() == []


class TestSessionCookieStore:
    """Tests for the session-backed jar."""

    @pytest.fixture
    def session(self):
        session = Mock()
        session.browser_context_id = 'ctx-42'
        session.get_cookies = AsyncMock(return_value=[])
        session.set_cookies = AsyncMock()
        session.delete_cookies = AsyncMock()
        return session

    def test_scope_id_uses_browser_context(self, session):
        assert SessionCookieStore(session).scope_id == 'session-ctx-42'

    @pytest.mark.asyncio
    async def test_put_forwards_cookie_params(self, session):
        store = SessionCookieStore(session)
        entry = CookieEntry(name='a', value='1', domain='.example.com', expires=2000.0)
        await store.put([entry])
        session.set_cookies.assert_awaited_once_with([entry.to_param()])

    @pytest.mark.asyncio
    async def test_put_nothing_skips_session_call(self, session):
        await SessionCookieStore(session).put([])
        session.set_cookies.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_deletes_each_cookie(self, session):
        await SessionCookieStore(session).remove([('a', 'example.com', '/')])
        session.delete_cookies.assert_awaited_once_with('a', 'example.com', '/')

    @pytest.mark.asyncio
    async def test_all_skips_malformed_cookies(self, session):
        session.get_cookies.return_value = [
            {'name': 'a', 'value': '1', 'domain': 'example.com', 'path': '/', 'expires': -1},
            {'name': 'broken'},
        ]
        entries = await SessionCookieStore(session).all()
        assert [entry.name for entry in entries] == ['a']
