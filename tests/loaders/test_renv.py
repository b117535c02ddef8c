"""Tests for renv.lock and .Rprofile loading."""

import json

import pytest

from envpolicy.loaders.renv import (
    RenvLoadError,
    load_renv_lock,
    load_rprofile,
    parse_rprofile,
    strip_r_comments,
)

LOCKFILE = {
    "R": {
        "Version": "4.3.2",
        "Repositories": [
            {"Name": "CRAN", "URL": "https://packagemanager.posit.co/cran/2024-01-15"},
            {"Name": "Internal", "URL": "http://cran.internal"},
        ],
    },
    "Packages": {
        "renv": {
            "Package": "renv",
            "Version": "1.0.3",
            "Source": "Repository",
            "Repository": "CRAN",
            "Hash": "41b847654f567341725473431dd0d5ab",
        },
        "mytools": {
            "Package": "mytools",
            "Version": "0.2.0",
            "Source": "GitHub",
            "RemoteType": "github",
            "RemoteSha": "0123456789abcdef0123456789abcdef01234567",
        },
        "scratch": {
            "Package": "scratch",
            "Version": "0.0.1",
            "Source": "Local",
        },
    },
}


def _write_lock(tmp_path, data=None):
    path = tmp_path / "renv.lock"
    path.write_text(json.dumps(data or LOCKFILE, indent=2))
    return path


def test_load_renv_lock(tmp_path):
    resources = load_renv_lock(_write_lock(tmp_path), "renv.lock")
    lockfile = resources[0]

    assert lockfile["type"] == "renv_lockfile"
    assert lockfile["address"] == "renv.lock"
    assert lockfile["line"] == 2
    assert lockfile["values"]["r_version"] == "4.3.2"
    assert lockfile["values"]["repository_urls"] == [
        "https://packagemanager.posit.co/cran/2024-01-15",
        "http://cran.internal",
    ]
    assert lockfile["values"]["insecure_repository_count"] == 1
    assert lockfile["values"]["package_count"] == 3
    assert lockfile["values"]["renv_version"] == "1.0.3"


def test_load_renv_lock_packages(tmp_path):
    resources = load_renv_lock(_write_lock(tmp_path), "analysis/renv.lock")
    packages = {r["name"]: r for r in resources if r["type"] == "renv_package"}

    assert packages["renv"]["address"] == "analysis/renv.lock:renv"
    assert packages["renv"]["values"]["pinned"] is True
    assert packages["renv"]["values"]["has_hash"] is True
    assert packages["mytools"]["values"]["source"] == "GitHub"
    assert packages["mytools"]["values"]["pinned"] is True
    assert packages["scratch"]["values"]["pinned"] is False
    assert packages["scratch"]["values"]["parent"] == "analysis/renv.lock"
    assert packages["renv"]["line"] is not None


def test_load_renv_lock_invalid_json(tmp_path):
    path = tmp_path / "renv.lock"
    path.write_text("{ not json")

    with pytest.raises(RenvLoadError, match="Invalid JSON"):
        load_renv_lock(path, "renv.lock")


def test_load_renv_lock_missing_r_section(tmp_path):
    path = _write_lock(tmp_path, {"Packages": {}})

    with pytest.raises(RenvLoadError, match="'R' section"):
        load_renv_lock(path, "renv.lock")


def test_strip_r_comments_keeps_hash_in_strings():
    code = strip_r_comments('x <- "a#b"  # trailing\n# full line\ny <- 1')

    assert code == 'x <- "a#b"  \n\ny <- 1'


def test_parse_rprofile_vector_repos():
    values = parse_rprofile(
        'source("renv/activate.R")\n'
        "options(\n"
        '  repos = c(CRAN = "https://packagemanager.posit.co/cran/latest",\n'
        '            Internal = "http://cran.internal"),\n'
        "  Ncpus = 4\n"
        ")\n"
    )

    assert values["activates_renv"] is True
    assert values["repos"] == {
        "CRAN": "https://packagemanager.posit.co/cran/latest",
        "Internal": "http://cran.internal",
    }
    assert values["insecure_repo_count"] == 1
    assert values["options"] == ["repos", "Ncpus"]


def test_parse_rprofile_scalar_and_indexed_repos():
    values = parse_rprofile(
        'options(repos = "https://cloud.r-project.org")\n'
        'r <- getOption("repos")\n'
        'r["BioC"] <- "https://bioconductor.org/packages/3.18/bioc"\n'
    )

    assert values["repos"] == {
        "CRAN": "https://cloud.r-project.org",
        "BioC": "https://bioconductor.org/packages/3.18/bioc",
    }
    assert values["activates_renv"] is False


def test_parse_rprofile_commented_activation_ignored():
    values = parse_rprofile('# source("renv/activate.R")\n')

    assert values["activates_renv"] is False


def test_load_rprofile(tmp_path):
    path = tmp_path / ".Rprofile"
    path.write_text('source("renv/activate.R")\n')

    resource = load_rprofile(path, ".Rprofile")[0]

    assert resource["type"] == "rprofile"
    assert resource["address"] == ".Rprofile"
    assert resource["values"]["activates_renv"] is True
