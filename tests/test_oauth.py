"""OAuth 1.0a signing and verification tests"""

import random

import pytest

from scorm_proxy.services import oauth

URL = "https://host/lti/launch"
SECRET = "s3cr3t"


def _signed(params, secret=SECRET, url=URL):
    signed = dict(params)
    signed["oauth_signature"] = oauth.sign_request("POST", url, signed, secret)
    return signed


@pytest.fixture
def launch_params():
    params = {
        "lti_message_type": "basic-lti-launch-request",
        "lti_version": "LTI-1p0",
        "resource_link_id": "rl-1",
        "user_id": "learner 42",
        "custom_course_id": "c/1?x=y&z",
        "lis_person_name_full": "Zoë Ünïcode",
    }
    params.update(oauth.generate_oauth_params("key_abc", timestamp=1700000000, nonce="n0nce"))
    return params


class TestPercentEncode:
    def test_unreserved_characters_stay_literal(self):
        assert oauth.percent_encode("AZaz09-._~") == "AZaz09-._~"

    def test_reserved_characters_are_encoded(self):
        assert oauth.percent_encode("a b+c/d=e&f*") == "a%20b%2Bc%2Fd%3De%26f%2A"

    def test_utf8_is_encoded_per_byte(self):
        assert oauth.percent_encode("é") == "%C3%A9"


class TestNormalizeUrl:
    def test_default_ports_and_case(self):
        assert oauth.normalize_url("HTTPS://Host:443/lti/launch?a=1#f") == URL
        assert oauth.normalize_url("http://host:80/x") == "http://host/x"

    def test_non_default_port_kept(self):
        assert oauth.normalize_url("http://host:8080/x") == "http://host:8080/x"

    def test_empty_path(self):
        assert oauth.normalize_url("https://host") == "https://host/"

    def test_relative_url_rejected(self):
        with pytest.raises(ValueError):
            oauth.normalize_url("/lti/launch")


class TestSignVerify:
    def test_round_trip(self, launch_params):
        assert oauth.verify(_signed(launch_params), SECRET, URL)

    def test_every_single_character_mutation_fails(self, launch_params):
        signed = _signed(launch_params)
        signature = signed["oauth_signature"]
        for i in range(len(signature)):
            replacement = "A" if signature[i] != "A" else "B"
            mutated = dict(signed)
            mutated["oauth_signature"] = signature[:i] + replacement + signature[i + 1:]
            assert not oauth.verify(mutated, SECRET, URL)

    def test_wrong_secret_fails(self, launch_params):
        assert not oauth.verify(_signed(launch_params), "other", URL)

    def test_tampered_parameter_fails(self, launch_params):
        signed = _signed(launch_params)
        signed["user_id"] = "someone-else"
        assert not oauth.verify(signed, SECRET, URL)

    def test_missing_signature_fails(self, launch_params):
        assert not oauth.verify(launch_params, SECRET, URL)

    def test_malformed_url_fails_closed(self, launch_params):
        assert not oauth.verify(_signed(launch_params), SECRET, "not a url")

    def test_verify_accepts_pairs(self, launch_params):
        pairs = list(_signed(launch_params).items())
        assert oauth.verify(pairs, SECRET, URL)

    def test_default_port_in_signed_url_is_equivalent(self, launch_params):
        signed = _signed(launch_params, url="https://host:443/lti/launch")
        assert oauth.verify(signed, SECRET, URL)


class TestBaseString:
    def test_parameter_order_independent(self, launch_params):
        items = list(launch_params.items())
        expected = oauth.build_base_string("POST", URL, items)
        for seed in range(5):
            shuffled = items[:]
            random.Random(seed).shuffle(shuffled)
            assert oauth.build_base_string("POST", URL, shuffled) == expected
            assert oauth.sign_request("POST", URL, shuffled, SECRET) == oauth.sign_request(
                "POST", URL, items, SECRET
            )

    def test_signature_excluded_and_sorted(self):
        base = oauth.build_base_string(
            "post", URL, [("b", "2"), ("a", "1"), ("oauth_signature", "x")]
        )
        assert base == "POST&https%3A%2F%2Fhost%2Flti%2Flaunch&a%3D1%26b%3D2"

    def test_duplicate_keys_sorted_by_value(self):
        base = oauth.build_base_string("POST", URL, [("a", "2"), ("a", "1")])
        assert base.endswith("a%3D1%26a%3D2")


class TestOutboundHelpers:
    def test_body_hash(self):
        # SHA-1 of the empty string
        assert oauth.body_hash("") == "2jmj7l5rSw0yVb/vlWAYkK/YBwk="
        assert oauth.body_hash(b"abc") == oauth.body_hash("abc")

    def test_authorization_header_only_oauth_pairs(self):
        header = oauth.authorization_header(
            {"oauth_consumer_key": "key abc", "oauth_signature": "a+b=", "other": "x"}
        )
        assert header.startswith("OAuth ")
        assert 'oauth_consumer_key="key%20abc"' in header
        assert 'oauth_signature="a%2Bb%3D"' in header
        assert "other" not in header

    def test_generated_params(self):
        params = oauth.generate_oauth_params("key_abc")
        assert params["oauth_consumer_key"] == "key_abc"
        assert params["oauth_signature_method"] == "HMAC-SHA1"
        assert params["oauth_version"] == "1.0"
        assert params["oauth_timestamp"].isdigit()
        assert params["oauth_nonce"] != oauth.generate_oauth_params("key_abc")["oauth_nonce"]
