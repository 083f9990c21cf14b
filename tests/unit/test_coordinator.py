"""
AuthorizationCoordinator のユニットテスト
"""

import unittest
from unittest.mock import MagicMock

from authflow.auth.base import AuthorizationLauncher
from authflow.auth.coordinator import MAX_FINISHED_SESSIONS, AuthorizationCoordinator
from authflow.auth.pkce import generate_challenge
from authflow.errors import AuthflowException, ErrorKind
from authflow.models import (
    AuthorizationRequest,
    CancelledResult,
    CodeResult,
    ErrorResult,
    ResponseType,
    ResultCode,
    SessionHandle,
    SessionState,
    TokenResult,
)


class TestBuildRequest(unittest.TestCase):
    """build_request の検証"""

    def setUp(self):
        self.coordinator = AuthorizationCoordinator(launcher=MagicMock(spec=AuthorizationLauncher))

    def test_build_request_sets_all_fields(self):
        """指定した値がそのままリクエストに入ること"""
        request = self.coordinator.build_request(
            "abc123",
            ResponseType.TOKEN,
            "myapp://callback",
            {"user-read-email"},
            "camp1",
            show_dialog=True,
            state="s1",
            custom_params={"locale": "ja"},
        )

        self.assertEqual(request.client_id, "abc123")
        self.assertEqual(request.redirect_uri, "myapp://callback")
        self.assertEqual(request.response_type, ResponseType.TOKEN)
        self.assertEqual(request.scopes, frozenset({"user-read-email"}))
        self.assertTrue(request.show_dialog)
        self.assertEqual(request.campaign_tag, "camp1")
        self.assertEqual(request.state, "s1")
        self.assertEqual(request.custom_param("locale"), "ja")
        self.assertIsNone(request.code_challenge)

    def test_empty_client_id_is_invalid_config(self):
        """client_id が空の場合は InvalidConfig"""
        with self.assertRaises(AuthflowException) as ctx:
            self.coordinator.build_request("", ResponseType.TOKEN, "myapp://callback")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CONFIG)

    def test_empty_redirect_uri_is_invalid_config(self):
        """redirect_uri が空の場合は InvalidConfig"""
        with self.assertRaises(AuthflowException) as ctx:
            self.coordinator.build_request("abc123", ResponseType.CODE, "")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CONFIG)

    def test_empty_custom_param_value_is_invalid_config(self):
        with self.assertRaises(AuthflowException) as ctx:
            self.coordinator.build_request(
                "abc123", ResponseType.CODE, "myapp://callback", custom_params={"key": ""}
            )
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CONFIG)

    def test_reserved_custom_param_key_is_invalid_config(self):
        """予約済みのクエリキーは追加パラメータに使えない"""
        for key in ("scope", "state", "client_id", "code_challenge"):
            with self.subTest(key=key):
                with self.assertRaises(AuthflowException) as ctx:
                    self.coordinator.build_request(
                        "abc123", ResponseType.CODE, "myapp://callback", custom_params={key: "x"}
                    )
                self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CONFIG)

    def test_request_is_immutable(self):
        request = self.coordinator.build_request("abc123", ResponseType.TOKEN, "myapp://callback")
        with self.assertRaises(AttributeError):
            request.client_id = "other"  # type: ignore[misc]


class TestAuthorizationFlow(unittest.TestCase):
    """begin_authorization / complete_authorization の検証"""

    def setUp(self):
        self.launcher = MagicMock(spec=AuthorizationLauncher)
        self.coordinator = AuthorizationCoordinator(launcher=self.launcher)

    def _begin(self, response_type: ResponseType, **kwargs):
        request = self.coordinator.build_request(
            "abc123", response_type, "myapp://callback", {"user-read-email"}, "camp1", **kwargs
        )
        return self.coordinator.begin_authorization(request)

    def test_begin_authorization_hands_url_to_launcher(self):
        """ランチャーに認可URLとハンドルが渡されること"""
        handle = self._begin(ResponseType.TOKEN)

        self.launcher.launch.assert_called_once()
        url, passed_handle = self.launcher.launch.call_args[0]
        self.assertEqual(passed_handle, handle)
        self.assertTrue(url.startswith("https://accounts.spotify.com/authorize?"))
        self.assertIn("client_id=abc123", url)
        self.assertEqual(self.coordinator.session_state(handle), SessionState.AWAITING_EXTERNAL_RESULT)

    def test_token_flow_scenario(self):
        """TOKENフローで token を受け取ると Token 結果になる"""
        handle = self._begin(ResponseType.TOKEN)

        result = self.coordinator.complete_authorization(handle, ResultCode.OK, {"token": "xyz"})

        self.assertEqual(result, TokenResult(value="xyz"))
        self.assertEqual(self.coordinator.session_state(handle), SessionState.RESOLVED)

    def test_token_flow_reads_access_token_and_expiry(self):
        handle = self._begin(ResponseType.TOKEN)

        result = self.coordinator.complete_authorization(
            handle, ResultCode.OK, {"access_token": "xyz", "expires_in": "3600"}
        )

        self.assertEqual(result, TokenResult(value="xyz", expires_in=3600))

    def test_code_flow_scenario(self):
        handle = self._begin(ResponseType.CODE)

        result = self.coordinator.complete_authorization(handle, ResultCode.OK, {"code": "c0de"})

        self.assertEqual(result, CodeResult(value="c0de"))

    def test_token_handle_with_code_payload_is_parse_failure(self):
        """TOKENフローのハンドルにコード形式のペイロードが届いても Token にはならない"""
        handle = self._begin(ResponseType.TOKEN)

        result = self.coordinator.complete_authorization(handle, ResultCode.OK, {"code": "c0de"})

        self.assertIsInstance(result, ErrorResult)
        self.assertEqual(result.kind, ErrorKind.PARSE_FAILURE)
        self.assertEqual(self.coordinator.session_state(handle), SessionState.FAILED)

    def test_code_handle_with_token_payload_is_parse_failure(self):
        handle = self._begin(ResponseType.CODE)

        result = self.coordinator.complete_authorization(handle, ResultCode.OK, {"access_token": "xyz"})

        self.assertEqual(result.kind, ErrorKind.PARSE_FAILURE)

    def test_empty_payload_is_parse_failure(self):
        """空のペイロードは ParseFailure"""
        handle = self._begin(ResponseType.TOKEN)

        result = self.coordinator.complete_authorization(handle, ResultCode.OK, {})

        self.assertIsInstance(result, ErrorResult)
        self.assertEqual(result.kind, ErrorKind.PARSE_FAILURE)

    def test_non_mapping_payload_is_parse_failure(self):
        handle = self._begin(ResponseType.TOKEN)

        result = self.coordinator.complete_authorization(handle, ResultCode.OK, ["xyz"])  # type: ignore[arg-type]

        self.assertEqual(result.kind, ErrorKind.PARSE_FAILURE)

    def test_cancelled_result_code(self):
        handle = self._begin(ResponseType.TOKEN)

        result = self.coordinator.complete_authorization(handle, ResultCode.CANCELED, None)

        self.assertEqual(result, CancelledResult())
        self.assertEqual(self.coordinator.session_state(handle), SessionState.CANCELLED)

    def test_error_payload_is_authorization_denied(self):
        handle = self._begin(ResponseType.CODE)

        result = self.coordinator.complete_authorization(
            handle, ResultCode.OK, {"error": "access_denied"}
        )

        self.assertEqual(result, ErrorResult(ErrorKind.AUTHORIZATION_DENIED, "access_denied"))

    def test_error_result_code_is_authorization_denied(self):
        handle = self._begin(ResponseType.CODE)

        result = self.coordinator.complete_authorization(handle, ResultCode.ERROR, {})

        self.assertEqual(result.kind, ErrorKind.AUTHORIZATION_DENIED)

    def test_unknown_result_code_is_parse_failure(self):
        handle = self._begin(ResponseType.CODE)

        result = self.coordinator.complete_authorization(handle, 42, {"code": "c0de"})

        self.assertEqual(result.kind, ErrorKind.PARSE_FAILURE)

    def test_state_mismatch_is_parse_failure(self):
        handle = self._begin(ResponseType.CODE, state="expected")

        result = self.coordinator.complete_authorization(
            handle, ResultCode.OK, {"code": "c0de", "state": "forged"}
        )

        self.assertEqual(result.kind, ErrorKind.PARSE_FAILURE)

    def test_matching_state_is_returned(self):
        handle = self._begin(ResponseType.CODE, state="expected")

        result = self.coordinator.complete_authorization(
            handle, ResultCode.OK, {"code": "c0de", "state": "expected"}
        )

        self.assertEqual(result, CodeResult(value="c0de", state="expected"))

    def test_result_is_produced_only_once(self):
        """同じハンドルの2回目の完了は結果を上書きしない"""
        handle = self._begin(ResponseType.TOKEN)
        first = self.coordinator.complete_authorization(handle, ResultCode.OK, {"token": "xyz"})

        second = self.coordinator.complete_authorization(handle, ResultCode.OK, {"token": "other"})

        self.assertEqual(first, TokenResult(value="xyz"))
        self.assertEqual(second.kind, ErrorKind.PARSE_FAILURE)
        self.assertEqual(self.coordinator.session_state(handle), SessionState.RESOLVED)

    def test_unknown_handle_is_parse_failure(self):
        result = self.coordinator.complete_authorization(
            SessionHandle(id="missing"), ResultCode.OK, {"token": "xyz"}
        )

        self.assertEqual(result.kind, ErrorKind.PARSE_FAILURE)

    def test_concurrent_flows_are_kept_apart(self):
        """トークンとコードのフローが同時に進行しても取り違えない"""
        token_handle = self._begin(ResponseType.TOKEN)
        code_handle = self._begin(ResponseType.CODE)

        code_result = self.coordinator.complete_authorization(code_handle, ResultCode.OK, {"code": "c0de"})
        token_result = self.coordinator.complete_authorization(token_handle, ResultCode.OK, {"token": "xyz"})

        self.assertEqual(code_result, CodeResult(value="c0de"))
        self.assertEqual(token_result, TokenResult(value="xyz"))

    def test_launcher_failure_marks_session_failed(self):
        self.launcher.launch.side_effect = RuntimeError("no browser")
        request = self.coordinator.build_request("abc123", ResponseType.TOKEN, "myapp://callback")

        with self.assertLogs("authflow.auth.coordinator", level="ERROR"):
            with self.assertRaises(RuntimeError):
                self.coordinator.begin_authorization(request)

        handle = self.launcher.launch.call_args[0][1]
        self.assertEqual(self.coordinator.session_state(handle), SessionState.FAILED)
        self.assertIsNone(self.coordinator.request_for(handle))

    def test_finished_sessions_are_not_retained(self):
        """完了したセッションは保持されず、終了状態の記録も上限を超えない"""
        pkce_coordinator = AuthorizationCoordinator(launcher=self.launcher, use_pkce=True)
        for _ in range(MAX_FINISHED_SESSIONS + 50):
            pkce_coordinator.build_request("abc123", ResponseType.CODE, "myapp://callback")
            request = pkce_coordinator.build_request("abc123", ResponseType.TOKEN, "myapp://callback")
            handle = pkce_coordinator.begin_authorization(request)
            pkce_coordinator.complete_authorization(handle, ResultCode.OK, {"token": "xyz"})

        self.assertEqual(pkce_coordinator._sessions, {})
        self.assertEqual(len(pkce_coordinator._finished), MAX_FINISHED_SESSIONS)
        self.assertEqual(pkce_coordinator.session_state(handle), SessionState.RESOLVED)
        self.assertIsNone(pkce_coordinator.request_for(handle))

    def test_discard_forgets_session(self):
        handle = self._begin(ResponseType.TOKEN)

        self.coordinator.discard(handle)

        self.assertIsNone(self.coordinator.request_for(handle))
        self.assertEqual(self.coordinator.session_state(handle), SessionState.IDLE)


class TestPKCE(unittest.TestCase):
    """PKCE付与の検証"""

    def setUp(self):
        self.launcher = MagicMock(spec=AuthorizationLauncher)
        self.coordinator = AuthorizationCoordinator(launcher=self.launcher, use_pkce=True)

    def test_code_request_carries_challenge_and_session_keeps_verifier(self):
        request = self.coordinator.build_request("abc123", ResponseType.CODE, "myapp://callback")
        handle = self.coordinator.begin_authorization(request)

        verifier = self.coordinator.pkce_verifier(handle)

        self.assertIsNotNone(verifier)
        self.assertEqual(request.code_challenge, generate_challenge(verifier))
        self.assertEqual(request.code_challenge_method, "S256")
        url = self.launcher.launch.call_args[0][0]
        self.assertIn("code_challenge=", url)
        self.assertNotIn(verifier, url)

    def test_retrying_same_request_keeps_verifier(self):
        """キャンセル後に同じリクエストで再開してもverifierを引き継ぐ"""
        request = self.coordinator.build_request("abc123", ResponseType.CODE, "myapp://callback")
        first = self.coordinator.begin_authorization(request)
        first_verifier = self.coordinator.pkce_verifier(first)
        self.coordinator.complete_authorization(first, ResultCode.CANCELED, None)

        second = self.coordinator.begin_authorization(request)

        self.assertIsNotNone(first_verifier)
        self.assertEqual(self.coordinator.pkce_verifier(second), first_verifier)
        self.assertEqual(request.code_challenge, generate_challenge(first_verifier))

    def test_verifier_is_not_part_of_request_repr(self):
        request = self.coordinator.build_request("abc123", ResponseType.CODE, "myapp://callback")

        self.assertNotIn(request.code_verifier, repr(request))

    def test_token_request_has_no_challenge(self):
        request = self.coordinator.build_request("abc123", ResponseType.TOKEN, "myapp://callback")
        handle = self.coordinator.begin_authorization(request)

        self.assertIsNone(request.code_challenge)
        self.assertIsNone(self.coordinator.pkce_verifier(handle))


class TestParseRedirectUri(unittest.TestCase):
    """parse_redirect_uri の検証"""

    def test_code_in_query(self):
        payload = AuthorizationCoordinator.parse_redirect_uri("myapp://callback?code=c0de&state=s")
        self.assertEqual(payload, {"code": "c0de", "state": "s"})

    def test_error_takes_precedence(self):
        payload = AuthorizationCoordinator.parse_redirect_uri(
            "myapp://callback?error=access_denied&code=c0de"
        )
        self.assertEqual(payload, {"error": "access_denied", "state": None})

    def test_token_in_fragment(self):
        payload = AuthorizationCoordinator.parse_redirect_uri(
            "myapp://callback#access_token=xyz&token_type=Bearer&expires_in=3600&state=s"
        )
        self.assertEqual(payload, {"access_token": "xyz", "state": "s", "expires_in": 3600})

    def test_invalid_expires_in_is_ignored(self):
        payload = AuthorizationCoordinator.parse_redirect_uri("myapp://callback#access_token=xyz&expires_in=soon")
        self.assertNotIn("expires_in", payload)
        self.assertEqual(payload["access_token"], "xyz")

    def test_empty_uri(self):
        self.assertEqual(AuthorizationCoordinator.parse_redirect_uri(None), {})
        self.assertEqual(AuthorizationCoordinator.parse_redirect_uri("myapp://callback"), {})


class TestAuthorizationRequestUrl(unittest.TestCase):
    """認可URLへの変換の検証"""

    def test_query_params_order_and_defaults(self):
        request = AuthorizationRequest(
            client_id="abc123",
            redirect_uri="myapp://callback",
            response_type=ResponseType.CODE,
        )

        params = request.to_query_params()

        self.assertEqual(
            params,
            [
                ("client_id", "abc123"),
                ("response_type", "code"),
                ("redirect_uri", "myapp://callback"),
                ("show_dialog", "false"),
                ("utm_source", "spotify-sdk"),
                ("utm_medium", "android-sdk"),
                ("utm_campaign", "android-sdk"),
            ],
        )

    def test_scope_state_and_custom_params_are_appended(self):
        request = AuthorizationRequest(
            client_id="abc123",
            redirect_uri="myapp://callback",
            response_type=ResponseType.TOKEN,
            scopes=frozenset({"user-read-email", "streaming"}),
            campaign_tag="camp1",
            state="s1",
            custom_params=(("locale", "ja"),),
        )

        params = dict(request.to_query_params())

        self.assertEqual(params["scope"], "streaming user-read-email")
        self.assertEqual(params["state"], "s1")
        self.assertEqual(params["utm_campaign"], "camp1")
        self.assertEqual(params["locale"], "ja")

    def test_from_url_restores_request(self):
        request = AuthorizationRequest(
            client_id="abc123",
            redirect_uri="myapp://callback",
            response_type=ResponseType.TOKEN,
            scopes=frozenset({"user-read-email"}),
            show_dialog=True,
            campaign_tag="camp1",
            state="s1",
            custom_params=(("locale", "ja"),),
        )

        self.assertEqual(AuthorizationRequest.from_url(request.to_url()), request)

    def test_to_url_merges_existing_query(self):
        """認可URLに既存のクエリがあっても区切りの ? は1つだけ"""
        request = AuthorizationRequest(
            client_id="abc123",
            redirect_uri="myapp://callback",
            response_type=ResponseType.CODE,
        )

        url = request.to_url("https://accounts.example.com/authorize?tenant=t1")

        self.assertEqual(url.count("?"), 1)
        self.assertTrue(url.startswith("https://accounts.example.com/authorize?tenant=t1&client_id=abc123"))
        self.assertEqual(AuthorizationRequest.from_url(url).client_id, "abc123")

    def test_from_url_without_client_id_raises(self):
        with self.assertRaises(AuthflowException) as ctx:
            AuthorizationRequest.from_url("https://accounts.spotify.com/authorize?response_type=code")
        self.assertEqual(ctx.exception.kind, ErrorKind.PARSE_FAILURE)


if __name__ == "__main__":
    unittest.main()
