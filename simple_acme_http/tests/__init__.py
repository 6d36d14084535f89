"""Unit tests and testing tools for the simple_acme_http package."""

TEST_DOMAIN = "test.simple-acme-http.example.com"
TEST_EMAIL = "simple-acme-http@example.com"
TEST_ACCOUNT_LOCATION = "https://ca.example.com/acme/reg/1"
TEST_AUTHZ_LOCATION = "https://ca.example.com/acme/authz/1"
TEST_AGREEMENT = "https://ca.example.com/terms/v1"
