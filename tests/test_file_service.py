"""Tests for the site filesystem layout, templates and archives."""

import os
from types import SimpleNamespace

import pytest

from errors import NotFoundError, ValidationError
from services.file_service import FileService


@pytest.fixture
def files():
    return FileService()


def fake_site(site_directory, template="landing", platform="nginx"):
    return SimpleNamespace(
        id="5f0c", site_directory=site_directory, template=template,
        platform=platform, domain="blog.example.test",
    )


def write(path, content=""):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)


class TestSkeleton:

    def test_create_site_directory(self, files, app):
        site_dir = files.create_site_directory("abc")
        assert site_dir == os.path.join(app.config["SITES_ROOT"], "abc")
        for name in ("public", "private", "logs"):
            assert os.path.isdir(os.path.join(site_dir, name))

    def test_create_is_idempotent(self, files):
        site_dir = files.create_site_directory("abc")
        write(os.path.join(site_dir, "public", "index.html"), "keep")
        files.create_site_directory("abc")
        assert os.path.isfile(os.path.join(site_dir, "public", "index.html"))

    def test_is_populated(self, files):
        site_dir = files.create_site_directory("abc")
        assert not files.is_populated(site_dir)
        assert not files.is_populated(None)
        write(os.path.join(site_dir, "logs", "access.log"))
        assert files.is_populated(site_dir)


class TestTemplates:

    def test_deploy_copies_template_and_runs_install_script(self, files, app):
        template = os.path.join(app.config["TEMPLATES_ROOT"], "nginx", "landing")
        write(os.path.join(template, "index.html"), "<h1>hi</h1>")
        write(os.path.join(template, "install.sh"), 'echo "$DOMAIN" > "$SITE_DIR/private/installed"\n')
        site_dir = files.create_site_directory("abc")

        assert files.deploy_template(fake_site(site_dir)) is True

        assert os.path.isfile(os.path.join(site_dir, "public", "index.html"))
        assert not os.path.exists(os.path.join(site_dir, "public", "install.sh"))
        with open(os.path.join(site_dir, "private", "installed")) as f:
            assert f.read().strip() == "blog.example.test"

    def test_deploy_skipped_when_populated(self, files, app):
        template = os.path.join(app.config["TEMPLATES_ROOT"], "nginx", "landing")
        write(os.path.join(template, "index.html"), "template")
        site_dir = files.create_site_directory("abc")
        write(os.path.join(site_dir, "public", "index.html"), "cloned")

        assert files.deploy_template(fake_site(site_dir)) is False
        with open(os.path.join(site_dir, "public", "index.html")) as f:
            assert f.read() == "cloned"

    def test_missing_template_is_skipped(self, files):
        site_dir = files.create_site_directory("abc")
        assert files.deploy_template(fake_site(site_dir, template="nope")) is False
        assert files.deploy_template(fake_site(site_dir, template=None)) is False


class TestCopyAndRemove:

    def test_copy_site_files(self, files):
        source = files.create_site_directory("src")
        write(os.path.join(source, "public", "a", "b.txt"), "nested")
        target = files.create_site_directory("dst")

        files.copy_site_files(source, target)

        with open(os.path.join(target, "public", "a", "b.txt")) as f:
            assert f.read() == "nested"

    def test_copy_missing_source(self, files, tmp_path):
        with pytest.raises(NotFoundError):
            files.copy_site_files(str(tmp_path / "missing"), str(tmp_path / "out"))

    def test_remove_site_directory(self, files):
        site_dir = files.create_site_directory("abc")
        assert files.remove_site_directory(site_dir) is True
        assert not os.path.exists(site_dir)
        assert files.remove_site_directory(site_dir) is False

    @pytest.mark.parametrize("target", ["/", "/etc", "{root}", "{root}/../elsewhere"])
    def test_remove_refuses_paths_outside_root(self, files, app, target):
        target = target.format(root=app.config["SITES_ROOT"])
        with pytest.raises(ValidationError):
            files.remove_site_directory(target)


class TestArchives:

    def test_archive_round_trip(self, files, tmp_path):
        site_dir = files.create_site_directory("abc")
        write(os.path.join(site_dir, "public", "index.html"), "page")
        dumps = tmp_path / "staging" / "databases"
        dumps.mkdir(parents=True)
        (dumps / "site_abc.sql").write_text("CREATE TABLE t (id int);")

        archive = files.create_archive(
            site_dir, str(tmp_path / "out" / "backup.tar.gz"), extra_paths=[str(dumps)]
        )
        out = tmp_path / "extracted"
        files.extract_archive(archive, str(out))

        assert (out / "abc" / "public" / "index.html").read_text() == "page"
        assert (out / "databases" / "site_abc.sql").read_text() == "CREATE TABLE t (id int);"

    def test_archive_missing_path(self, files, tmp_path):
        with pytest.raises(NotFoundError):
            files.create_archive(str(tmp_path / "missing"))

    def test_directory_size(self, files, tmp_path):
        write(str(tmp_path / "d" / "a.txt"), "x" * 10)
        write(str(tmp_path / "d" / "sub" / "b.txt"), "y" * 5)
        assert files.get_directory_size(str(tmp_path / "d")) == 15
