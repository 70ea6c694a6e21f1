#!/usr/bin/env python3
"""
Read-only access to the commits of a pull request branch.

The checker only ever asks a handful of questions about the history: does a
ref exist, which commits are in BASE..HEAD, and what are the subject, body
and parents of a given commit. Each question is a method of CommitSource, so
the rules can run against the local git repository, against the GitHub API,
or against an in-memory history in the tests.
"""
import os
import subprocess

import github  # This is PyGithub.

# Probed in this order when no upstream ref is given on the command line.
DEFAULT_BASE_REFS = ["origin/main", "origin/master"]

SHORT_SHA_LENGTH = 7


class ConfigError(ValueError):
    """The environment does not describe a usable commit source."""


def git_output(*args):
    """Get output from the git command, checking for the successful exit code"""
    return subprocess.check_output(["git", *args], text=True)


def git_returncode(*args):
    """Run a git command quietly, returning the exit code"""
    return subprocess.run(
        ["git", *args],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=False,
    ).returncode


def split_lines(text):
    """Cut git output at newlines only, dropping the final terminator"""
    if text.endswith("\n"):
        text = text[:-1]
    return text.split("\n")


def parse_message(text):
    """Split a raw commit message into the subject and the body lines.

    Like git's %s, the subject is the whole first paragraph with its lines
    joined by spaces. The body lines have the shape `git show -s
    --format=%b` prints: the paragraphs after the first blank line,
    followed by one terminating empty line. A message without a body
    therefore has a single, empty, body line."""

    lines = text.split("\n")

    while lines and not lines[0].strip():
        lines.pop(0)

    subject_lines = []
    while lines and lines[0].strip():
        subject_lines.append(lines.pop(0).rstrip())
    subject = " ".join(subject_lines)

    # git drops the blank separator and any trailing blank lines
    body = lines
    while body and not body[0].strip():
        body.pop(0)
    while body and not body[-1].strip():
        body.pop()

    return subject, body + [""]


class CommitSource:
    """The version control queries the commit checker relies on."""

    def resolve_ref(self, name):
        raise NotImplementedError

    def list_commits(self, base, head):
        """Short hashes of the commits in head's ancestry but not in base's"""
        raise NotImplementedError

    def subject(self, sha):
        raise NotImplementedError

    def body_lines(self, sha):
        raise NotImplementedError

    def parent_count(self, sha):
        raise NotImplementedError


class GitCommitSource(CommitSource):
    """Queries the git repository of the current directory.

    Any failing git command raises subprocess.CalledProcessError."""

    def resolve_ref(self, name):
        return git_returncode("rev-parse", "--verify", "--quiet", name) == 0

    def list_commits(self, base, head):
        return git_output("log", "--format=%h", f"{base}..{head}").split()

    def subject(self, sha):
        return git_output("show", "-s", "--format=%s", sha).rstrip("\n")

    def body_lines(self, sha):
        return split_lines(git_output("show", "-s", "--format=%b", sha))

    def parent_count(self, sha):
        return len(git_output("show", "-s", "--format=%P", sha).split())


class GithubCommitSource(CommitSource):
    """Lists the commits of a pull request through the GitHub API.

    The pull request defines the range, so the base and head refs are not
    used. Commits are listed newest first, the same order as `git log`."""

    def __init__(self, token, repo_name, pr_number):
        gh = github.Github(auth=github.Auth.Token(token))
        pull = gh.get_repo(repo_name).get_pull(pr_number)
        commits = list(pull.get_commits())

        # Abbreviate like git does, growing the hashes until they are unique
        length = SHORT_SHA_LENGTH
        while length < 40 and len({c.sha[:length] for c in commits}) < len(commits):
            length += 1

        self.commits = {}
        self.order = []
        for commit in reversed(commits):
            sha = commit.sha[:length]
            self.commits[sha] = commit
            self.order.append(sha)

    def resolve_ref(self, name):
        return True

    def list_commits(self, base, head):
        return list(self.order)

    def subject(self, sha):
        return parse_message(self.commits[sha].commit.message)[0]

    def body_lines(self, sha):
        return parse_message(self.commits[sha].commit.message)[1]

    def parent_count(self, sha):
        return len(self.commits[sha].parents)


class MemoryCommitSource(CommitSource):
    """A fixed history held in memory, listed in the order it was added."""

    def __init__(self, refs=None):
        self.refs = set(refs or [])
        self.messages = {}
        self.parents = {}
        self.order = []

    def add(self, sha, message, parents=1):
        self.messages[sha] = message
        self.parents[sha] = parents
        self.order.append(sha)
        return self

    def resolve_ref(self, name):
        return name in self.refs

    def list_commits(self, base, head):
        return list(self.order)

    def subject(self, sha):
        return parse_message(self.messages[sha])[0]

    def body_lines(self, sha):
        return parse_message(self.messages[sha])[1]

    def parent_count(self, sha):
        return self.parents[sha]


def resolve_base(source, upstream=None):
    """Pick the lower bound of the commit range.

    An explicitly given upstream ref is used as is. Otherwise the first of
    DEFAULT_BASE_REFS that exists wins, and the last one is used without
    probing when none does."""

    if upstream:
        return upstream

    for name in DEFAULT_BASE_REFS[:-1]:
        if source.resolve_ref(name):
            return name
    return DEFAULT_BASE_REFS[-1]


def source_from_env(environ=None):
    """Build the commit source selected by the COMMIT_SOURCE variable."""

    environ = os.environ if environ is None else environ
    kind = environ.get("COMMIT_SOURCE", "git")

    if kind == "git":
        return GitCommitSource()

    if kind == "github":
        token = environ.get("GITHUB_TOKEN")
        repo_name = environ.get("GITHUB_REPOSITORY")
        pr_number = environ.get("PR_NUMBER")
        if not token:
            raise ConfigError("Please populate the GITHUB_TOKEN environment variable.")
        if not repo_name:
            raise ConfigError(
                "Please specify the repository in the GITHUB_REPOSITORY environment "
                "variable, e.g. `owner/name`."
            )
        if not pr_number or not pr_number.isdigit():
            raise ConfigError(
                "Please specify the pull request number in the PR_NUMBER environment variable."
            )
        return GithubCommitSource(token, repo_name, int(pr_number))

    raise ConfigError(f"Unknown COMMIT_SOURCE '{kind}', expected 'git' or 'github'.")
