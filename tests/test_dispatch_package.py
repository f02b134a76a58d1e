"""Dispatch package generator tests"""

import io
import re
import zipfile

from scorm_proxy.services.dispatch_package import (
    DispatchPackageService,
    dispatch_filename,
)
from scorm_proxy.services.manifest import parse_manifest_bytes

LAUNCH_URL = "https://host/dispatch/launch/0b6f3c2e-token"


def _open(package: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(package))


def _launch_literal(launcher: str) -> str:
    match = re.search(r"var launchUrl = '((?:[^'\\]|\\.)*)';", launcher)
    assert match, "launch URL literal not found"
    return match.group(1)


class TestDispatchPackage:
    def setup_method(self):
        self.service = DispatchPackageService()

    def test_archive_has_exactly_two_files(self):
        with _open(self.service.generate("Course", LAUNCH_URL)) as zf:
            assert sorted(zf.namelist()) == ["imsmanifest.xml", "launcher.html"]
            assert zf.testzip() is None

    def test_manifest_points_at_launcher(self):
        with _open(self.service.generate("Safety & <Health>", LAUNCH_URL)) as zf:
            manifest = parse_manifest_bytes(zf.read("imsmanifest.xml"))
        assert manifest.scormVersion == "1.2"
        assert manifest.launchPath == "launcher.html"
        assert [r.href for r in manifest.resources] == ["launcher.html"]
        assert manifest.resources[0].scormType == "sco"
        assert manifest.title == "Safety & <Health>"
        assert manifest.identifier.startswith("dispatch_")

    def test_launch_url_embedded_verbatim(self):
        with _open(self.service.generate("Course", LAUNCH_URL)) as zf:
            launcher = zf.read("launcher.html").decode("utf-8")
        assert _launch_literal(launcher) == LAUNCH_URL

    def test_launch_url_is_js_escaped(self):
        url = "https://host/dispatch/launch/t?a='b'&c=</script>\\"
        launcher = self.service.build_launcher(url)
        literal = _launch_literal(launcher)
        assert "</script>" not in literal
        assert literal == "https://host/dispatch/launch/t?a=\\'b\\'&c=\\x3C/script>\\\\"

    def test_launcher_locates_both_api_flavours(self):
        launcher = self.service.build_launcher(LAUNCH_URL)
        assert "'API'" in launcher and "'API_1484_11'" in launcher
        assert "cmi.core.student_id" in launcher and "cmi.learner_id" in launcher
        assert "LMSFinish('')" in launcher and "Terminate('')" in launcher
        assert "session_id" in launcher

    def test_filename_sanitized(self):
        assert dispatch_filename("Intro: Safety 101!") == "Intro__Safety_101__dispatch.zip"
