#!/usr/bin/env python3
"""
Simple PR commit validator.

Checks the commits between the upstream ref and the current branch: they
must not be merge commits (subtree merges excepted), must not be fixup or
squash commits, and their subject and body lines must respect the length
limits. Exits with a non-zero status if any commit fails.

Usage: check_pr_commits.py [upstream ref]
"""
import argparse
import enum
import os
import re
import sys
from dataclasses import dataclass, field

from commit_source import ConfigError, resolve_base, source_from_env

HEAD = "HEAD"

# Hard limits fail the commit, soft limits only warn about it.
SUBJECT_MAX = 70
SUBJECT_WARN = 50
BODY_LINE_MAX = 78
BODY_LINE_WARN = 72

# Subject generated by `git subtree`, e.g. "Merge commit 'abc123' as 'vendor/lib'"
SUBTREE_MERGE_RE = re.compile(r"^Merge commit .+ as .+")

FIXUP_RE = re.compile(r"fixup|squash")

OK = "\u2714"
NOK = "\u2718"
WARN = "\u26a0"

COLOR_FAIL = "\033[1m\033[31m"  # bold red
COLOR_PASS = "\033[1m\033[32m"  # bold green
COLOR_WARN = "\033[1m\033[33m"  # bold yellow
COLOR_RESET = "\033[0m"


class Outcome(enum.Enum):
    PASS = 0
    WARN = 1
    FAIL = 2


@dataclass
class CommitResult:
    sha: str
    subject: str
    outcome: Outcome
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)


@dataclass
class RunReport:
    """Results of all the checked commits, in the order they were checked."""

    results: list = field(default_factory=list)

    def add(self, result):
        self.results.append(result)

    @property
    def errors(self):
        return [msg for result in self.results for msg in result.errors]

    @property
    def warnings(self):
        return [msg for result in self.results for msg in result.warnings]

    @property
    def failed(self):
        return any(result.outcome == Outcome.FAIL for result in self.results)

    def exit_code(self):
        return 1 if self.failed else 0


#############################################################################
#  Rules. Each one appends a message to `log` when it fires and returns
#  whether it fired.


def is_subtree_merge(source, sha):
    return SUBTREE_MERGE_RE.match(source.subject(sha)) is not None


def subject_length(subject):
    """Length of the subject the way `wc -c` counts it: bytes plus newline"""
    return len(subject.encode("utf-8")) + 1


def is_merge_commit(source, sha, log):
    if source.parent_count(sha) > 1 and not is_subtree_merge(source, sha):
        log.append(f"{sha} appears to be a merge commit")
        return True
    return False


def is_fixup_commit(source, sha, log):
    if FIXUP_RE.search(source.subject(sha)):
        log.append(f"{sha} appears to be a fixup/squash commit")
        return True
    return False


def subject_length_exceeds(source, sha, limit, log):
    if is_subtree_merge(source, sha):
        return False
    if subject_length(source.subject(sha)) > limit:
        log.append(f"{sha} has a subject longer than {limit} characters")
        return True
    return False


def body_is_empty(source, sha, log):
    # The body listing ends with git's terminating newline, so a commit
    # without a body still has one line.
    if is_subtree_merge(source, sha):
        return False
    if len(source.body_lines(sha)) <= 1:
        log.append(f"{sha} has an empty commit body")
        return True
    return False


def body_line_length_exceeds(source, sha, limit, log):
    if is_subtree_merge(source, sha):
        return False
    exceeded = False
    for number, line in enumerate(source.body_lines(sha), start=1):
        if len(line) > limit:
            log.append(
                f"{sha} commit body line {number} is {len(line)} characters long (limit {limit})"
            )
            exceeded = True
    return exceeded


def check_errors(source, sha, log):
    """Hard rules, stopping at the first one that fires"""
    return (
        is_merge_commit(source, sha, log)
        or is_fixup_commit(source, sha, log)
        or subject_length_exceeds(source, sha, SUBJECT_MAX, log)
        or body_is_empty(source, sha, log)
        or body_line_length_exceeds(source, sha, BODY_LINE_MAX, log)
    )


def check_warnings(source, sha, log):
    """Soft rules, only looked at when no hard rule fired"""
    return subject_length_exceeds(
        source, sha, SUBJECT_WARN, log
    ) or body_line_length_exceeds(source, sha, BODY_LINE_WARN, log)


def check_commit(source, sha):
    result = CommitResult(sha=sha, subject=source.subject(sha), outcome=Outcome.PASS)
    if check_errors(source, sha, result.errors):
        result.outcome = Outcome.FAIL
    elif check_warnings(source, sha, result.warnings):
        result.outcome = Outcome.WARN
    return result


#############################################################################
#  Output


def use_color(stream=None, environ=None):
    stream = sys.stdout if stream is None else stream
    environ = os.environ if environ is None else environ
    if "NO_COLOR" in environ:
        return False
    return bool(environ.get("GITHUB_ACTIONS")) or stream.isatty()


def paint(text, color_code, color):
    if not color:
        return text
    return f"{color_code}{text}{COLOR_RESET}"


def symbol(outcome, color):
    if outcome == Outcome.FAIL:
        return paint(NOK, COLOR_FAIL, color)
    if outcome == Outcome.WARN:
        return paint(WARN, COLOR_WARN, color)
    return paint(OK, COLOR_PASS, color)


def commit_line(result, color=False):
    return f" {symbol(result.outcome, color)} {result.sha} {result.subject}"


def dump_errors(report, color=False, out=None):
    print("\nCommit message validation failed::", file=out)
    for line in report.errors:
        print(f" {paint(line, COLOR_FAIL, color)}", file=out)


def dump_warnings(report, color=False, out=None):
    if report.warnings:
        print("\nCommit warnings::", file=out)
        for line in report.warnings:
            print(f" {paint(line, COLOR_WARN, color)}", file=out)


def check_commits(source, base, head=HEAD, color=False, out=None):
    """Check every commit in base..head, printing a line for each of them
    as soon as it is checked and the error and warning logs at the end."""

    print("Validating commits on current branch:", file=out)

    report = RunReport()
    for sha in source.list_commits(base, head):
        result = check_commit(source, sha)
        report.add(result)
        print(commit_line(result, color), file=out)

    if report.failed:
        dump_errors(report, color, out)

    dump_warnings(report, color, out)

    return report


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Check the commit messages of the current branch."
    )
    parser.add_argument(
        "upstream",
        nargs="?",
        help="upstream ref to compare against, origin/main or origin/master by default",
    )
    args = parser.parse_args(argv)

    try:
        source = source_from_env()
    except ConfigError as e:
        print(e, file=sys.stderr)
        return 1

    base = resolve_base(source, args.upstream)
    report = check_commits(source, base, HEAD, color=use_color())
    return report.exit_code()


if __name__ == "__main__":
    sys.exit(main())
