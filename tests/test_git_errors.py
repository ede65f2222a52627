"""Table-driven tests for app.services.git_errors: one classifier, two taxonomies."""

import unittest

from app.services.git_errors import (
    GitFailure,
    classify_git_error,
    to_clone_error,
    to_validation_error,
)

CASES: list[tuple[str, GitFailure]] = [
    ("remote: Invalid username or password.\nfatal: Authentication failed for 'https://github.com/a/b/'", GitFailure.AUTH),
    ("git@github.com: Permission denied (publickey).", GitFailure.AUTH),
    ("fatal: could not read Username for 'https://github.com': terminal prompts disabled", GitFailure.AUTH),
    ("The requested URL returned error: 403", GitFailure.AUTH),
    ("remote: Repository not found.\nfatal: repository 'https://github.com/a/b/' not found", GitFailure.NOT_FOUND),
    ("ERROR: Repository does not exist", GitFailure.NOT_FOUND),
    ("fatal: unable to access 'https://github.com/a/b/': The requested URL returned error: 404", GitFailure.NOT_FOUND),
    ("fatal: Remote branch nope not found in upstream origin", GitFailure.NOT_FOUND),
    ("ssh: connect to host github.com port 22: Connection timed out", GitFailure.TIMEOUT),
    ("fatal: unable to access 'https://github.com/a/b/': Failed to connect to github.com port 443 after 134045 ms: Connection timed out", GitFailure.TIMEOUT),
    ("git ls-remote timed out after 10s", GitFailure.TIMEOUT),
    ("fatal: unable to access 'https://git.example.com:4040/a/b/': Could not resolve host: git.example.com", GitFailure.NETWORK),
    ("fatal: unable to access 'https://nope.invalid/a/b/': Could not resolve host: nope.invalid", GitFailure.NETWORK),
    ("ssh: Could not resolve hostname nope.invalid: Name or service not known", GitFailure.NETWORK),
    ("fatal: unable to access: Failed to connect to github.com port 443: Connection refused", GitFailure.NETWORK),
    ("getaddrinfo ENOTFOUND github.com", GitFailure.NETWORK),
    ("fatal: early EOF", GitFailure.UNKNOWN),
    ("", GitFailure.UNKNOWN),
]


class TestClassifyGitError(unittest.TestCase):
    def test_table(self) -> None:
        for message, expected in CASES:
            with self.subTest(message=message):
                self.assertEqual(classify_git_error(message), expected)

    def test_case_insensitive(self) -> None:
        self.assertEqual(classify_git_error("AUTHENTICATION FAILED"), GitFailure.AUTH)

    def test_timed_out_flag(self) -> None:
        self.assertEqual(classify_git_error("fatal: early EOF", timed_out=True), GitFailure.TIMEOUT)

    def test_auth_beats_timeout(self) -> None:
        self.assertEqual(
            classify_git_error("Authentication failed", timed_out=True), GitFailure.AUTH
        )

    def test_none(self) -> None:
        self.assertEqual(classify_git_error(None), GitFailure.UNKNOWN)


class TestTaxonomyMapping(unittest.TestCase):
    def test_validation_taxonomy(self) -> None:
        self.assertEqual(to_validation_error(GitFailure.AUTH), "AUTH_FAILED")
        self.assertEqual(to_validation_error(GitFailure.NOT_FOUND), "NOT_FOUND")
        self.assertEqual(to_validation_error(GitFailure.TIMEOUT), "VALIDATION_TIMEOUT")
        self.assertEqual(to_validation_error(GitFailure.NETWORK), "NETWORK_ERROR")
        self.assertEqual(to_validation_error(GitFailure.UNKNOWN), "UNKNOWN")

    def test_clone_taxonomy(self) -> None:
        self.assertEqual(to_clone_error(GitFailure.AUTH), "AUTHENTICATION")
        self.assertEqual(to_clone_error(GitFailure.NOT_FOUND), "REPOSITORY_NOT_FOUND")
        self.assertEqual(to_clone_error(GitFailure.TIMEOUT), "TIMEOUT")
        self.assertEqual(to_clone_error(GitFailure.NETWORK), "NETWORK")
        self.assertEqual(to_clone_error(GitFailure.UNKNOWN), "UNKNOWN")
