import pytest

from pipeline.normalize import (
    STANDARD_LABELS,
    answers_from_flat,
    answers_from_payload,
    derive,
    extract_domain_from_email,
    normalize_url,
    normalize_website,
    to_int,
)


class TestExtractDomain:
    """Domain extraction from email addresses."""

    def test_simple_address(self):
        assert extract_domain_from_email("a@acme.com") == "acme.com"

    def test_keeps_case(self):
        assert extract_domain_from_email("Jane@Acme.COM") == "Acme.COM"

    @pytest.mark.parametrize("email", ["", None, "bad-email", "a@b@c.com", "a@@acme.com"])
    def test_rejects_malformed(self, email):
        assert extract_domain_from_email(email) is None

    @pytest.mark.parametrize("email,expected", [
        ("@acme.com", "acme.com"),
        ("jane@", ""),
        (" jane@acme.com ", "acme.com "),
    ])
    def test_returns_text_after_at_as_written(self, email, expected):
        assert extract_domain_from_email(email) == expected

    @pytest.mark.parametrize("local", ["", "jane", "jane.doe+leads", "J"])
    @pytest.mark.parametrize("domain", ["", "acme.com", "Acme.COM", "sub.acme.io", "not a domain"])
    def test_single_at_returns_domain_part(self, local, domain):
        assert extract_domain_from_email(f"{local}@{domain}") == domain

    def test_empty_domain_is_rejected_by_derive(self):
        derived = derive({"Email Address": "jane@"})
        assert derived["domain"] is None


class TestNormalizeWebsite:
    """Hostname normalization for bare domains and URLs."""

    @pytest.mark.parametrize("value,expected", [
        ("acme.com", "acme.com"),
        ("https://www.Acme.com/pricing?x=1", "acme.com"),
        ("http://acme.com:8080", "acme.com"),
        ("www.acme.co.uk/", "acme.co.uk"),
        ("sub.acme.io", "sub.acme.io"),
    ])
    def test_valid_inputs(self, value, expected):
        assert normalize_website(value) == expected

    @pytest.mark.parametrize("value", ["", None, "not a domain", "localhost", "https://", "acme"])
    def test_invalid_inputs(self, value):
        assert normalize_website(value) is None


class TestNormalizeUrl:
    """Destination URLs for redirects."""

    def test_missing_uses_fallback(self):
        assert normalize_url(None, "https://fallback.example") == "https://fallback.example"
        assert normalize_url("", "https://fallback.example") == "https://fallback.example"

    def test_bare_host_is_upgraded(self):
        assert normalize_url("cal.com/acme", "x") == "https://cal.com/acme"

    def test_absolute_urls_pass_through(self):
        assert normalize_url("http://acme.com/book", "x") == "http://acme.com/book"
        assert normalize_url("https://acme.com/book", "x") == "https://acme.com/book"


class TestAnswers:
    """Building Answers from inbound payloads."""

    def test_flat_payload(self):
        answers = answers_from_flat({"work_email": "a@acme.com", "company_name": "Acme", "company_seats": 12})
        assert answers["Email Address"] == "a@acme.com"
        assert answers["Company Name"] == "Acme"
        assert answers["Number of Seats"] == "12"
        assert answers["Website"] == ""
        assert set(STANDARD_LABELS) <= set(answers)

    def test_flat_payload_aliases(self):
        answers = answers_from_flat({"email": "b@beta.io", "company": "Beta", "domain": "beta.io"})
        assert answers["Email Address"] == "b@beta.io"
        assert answers["Company Name"] == "Beta"
        assert answers["Website"] == "beta.io"

    def test_form_builder_payload(self):
        payload = {
            "event": {
                "data": {
                    "responseId": "resp_1",
                    "fields": [
                        {"label": "Email Address", "value": "a@acme.com"},
                        {"label": "Company Name", "value": "Acme"},
                        {"label": "Questions", "value": ["pricing", "security"]},
                        {"key": "question_x", "value": None},
                    ],
                }
            }
        }
        sid, answers = answers_from_payload(payload)
        assert sid == "resp_1"
        assert answers["Email Address"] == "a@acme.com"
        assert answers["Questions"] == "pricing, security"
        assert answers["question_x"] == ""
        assert answers["Website"] == ""

    def test_data_fields_without_event(self):
        sid, answers = answers_from_payload({"data": {"fields": [{"label": "Website", "value": "acme.com"}]}})
        assert sid
        assert answers["Website"] == "acme.com"
        assert answers["Email Address"] == ""

    def test_non_dict_payload(self):
        sid, answers = answers_from_payload(["not", "a", "dict"])
        assert sid
        assert answers["Email Address"] == ""


class TestDerive:
    """Canonical lead facts from answers."""

    def test_email_domain(self, answers):
        derived = derive(answers)
        assert derived["domain"] == "acme.com"
        assert derived["website"] is None
        assert derived["company_name"] == "Acme"
        assert derived["personal_email"] is False

    def test_website_beats_email(self, answers):
        answers["Website"] = "https://www.acme-corp.com/about"
        answers["Email Address"] = "a@gmail.com"
        derived = derive(answers)
        assert derived["domain"] == "acme-corp.com"
        assert derived["personal_email"] is False

    def test_personal_email(self, answers):
        answers["Email Address"] = "someone@Gmail.com"
        derived = derive(answers)
        assert derived["domain"] == "gmail.com"
        assert derived["personal_email"] is True

    def test_bad_email(self, answers):
        answers["Email Address"] = "bad-email"
        derived = derive(answers)
        assert derived["domain"] is None

    def test_seats_parsed(self, answers):
        answers["Number of Seats"] = "about 1,200"
        assert derive(answers)["seats"] == 1200
        assert to_int("") is None
