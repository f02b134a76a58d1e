"""
Dispatch Package Service

Builds the thin SCORM 1.2 package handed to foreign LMSs. The package holds
a single SCO (``launcher.html``) that finds the host LMS's runtime API,
reads the learner id from it and redirects the browser to the hosted player
through the dispatch launch URL.
"""

import logging
import re
import time
import zipfile
from io import BytesIO

logger = logging.getLogger(__name__)

MANIFEST_NAME = "imsmanifest.xml"
LAUNCHER_NAME = "launcher.html"
# Fixed entry timestamp keeps the archive bytes stable for equal input
ZIP_ENTRY_DATE = (1980, 1, 1, 0, 0, 0)

MANIFEST_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="{identifier}" version="1"
          xmlns="http://www.imsproject.org/xsd/imscp_rootv1p1p2"
          xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_rootv1p2"
          xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
          xsi:schemaLocation="http://www.imsproject.org/xsd/imscp_rootv1p1p2 imscp_rootv1p1p2.xsd
                              http://www.adlnet.org/xsd/adlcp_rootv1p2 adlcp_rootv1p2.xsd">

    <metadata>
        <schema>ADL SCORM</schema>
        <schemaversion>1.2</schemaversion>
    </metadata>

    <organizations default="org_1">
        <organization identifier="org_1">
            <title>{title}</title>
            <item identifier="item_1" identifierref="res_1">
                <title>{title}</title>
            </item>
        </organization>
    </organizations>

    <resources>
        <resource identifier="res_1" type="webcontent" adlcp:scormtype="sco" href="{launcher}">
            <file href="{launcher}"/>
        </resource>
    </resources>

</manifest>
"""

LAUNCHER_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Loading Course...</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #f5f5f5;
        }
        .loading { text-align: center; }
    </style>
</head>
<body>
    <div class="loading">
        <p>Loading course content...</p>
    </div>

    <script>
    (function () {
        var MAX_HOPS = 10;

        function findApi(win, name) {
            var hops = 0;
            while (win && !win[name] && win.parent && win.parent !== win && hops < MAX_HOPS) {
                hops++;
                win = win.parent;
            }
            try {
                return (win && win[name]) || null;
            } catch (e) {
                return null;
            }
        }

        function locateApi() {
            try {
                return findApi(window, 'API') || findApi(window, 'API_1484_11');
            } catch (e) {
                return null;
            }
        }

        function appendParam(url, name, value) {
            return url + (url.indexOf('?') > -1 ? '&' : '?') + name + '=' + encodeURIComponent(value);
        }

        function newSessionId() {
            return Date.now().toString(36) + '-' + Math.random().toString(36).slice(2, 10);
        }

        var lmsAPI = locateApi();

        if (lmsAPI) {
            if (lmsAPI.LMSInitialize) {
                lmsAPI.LMSInitialize('');
            } else if (lmsAPI.Initialize) {
                lmsAPI.Initialize('');
            }
        }

        var launchUrl = '__LAUNCH_URL__';

        if (lmsAPI) {
            try {
                var learnerId = lmsAPI.LMSGetValue ? lmsAPI.LMSGetValue('cmi.core.student_id') : null;
                if (!learnerId && lmsAPI.GetValue) {
                    learnerId = lmsAPI.GetValue('cmi.learner_id');
                }
                if (learnerId) {
                    launchUrl = appendParam(launchUrl, 'user_id', learnerId);
                }
            } catch (e) {
                // learner id is optional
            }
        }

        launchUrl = appendParam(launchUrl, 'session_id', newSessionId());

        window.onunload = function () {
            if (!lmsAPI) {
                return;
            }
            try {
                if (lmsAPI.LMSFinish) {
                    lmsAPI.LMSFinish('');
                } else if (lmsAPI.Terminate) {
                    lmsAPI.Terminate('');
                }
            } catch (e) {
                // unload is best-effort
            }
        };

        window.location.href = launchUrl;
    })();
    </script>
</body>
</html>
"""


class DispatchPackageService:
    """Generates dispatch packages as in-memory zip archives"""

    def generate(self, course_title: str, launch_url: str) -> bytes:
        """
        Build the two-file dispatch archive.

        Args:
            course_title: Title written into the manifest
            launch_url: Dispatch launch URL the launcher redirects to

        Returns:
            bytes: zip content with ``imsmanifest.xml`` and ``launcher.html``
        """
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zip_file:
            self._write_entry(zip_file, MANIFEST_NAME, self.build_manifest(course_title))
            self._write_entry(zip_file, LAUNCHER_NAME, self.build_launcher(launch_url))

        logger.info(
            f"Generated dispatch package for '{course_title}' ({buffer.tell()} bytes)"
        )
        return buffer.getvalue()

    def build_manifest(self, course_title: str) -> str:
        identifier = f"dispatch_{int(time.time() * 1000)}"
        return MANIFEST_TEMPLATE.format(
            identifier=identifier,
            title=self._escape_xml(course_title),
            launcher=LAUNCHER_NAME,
        )

    def build_launcher(self, launch_url: str) -> str:
        return LAUNCHER_TEMPLATE.replace(
            "__LAUNCH_URL__", self._escape_js_string(launch_url)
        )

    def _write_entry(self, zip_file: zipfile.ZipFile, name: str, content: str) -> None:
        info = zipfile.ZipInfo(name, date_time=ZIP_ENTRY_DATE)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        zip_file.writestr(info, content.encode("utf-8"))

    def _escape_xml(self, text: str) -> str:
        """Escape special characters for XML"""
        if not text:
            return ""

        return (text
                .replace("&", "&amp;")
                .replace("<", "&lt;")
                .replace(">", "&gt;")
                .replace("\"", "&quot;")
                .replace("'", "&apos;"))

    def _escape_js_string(self, text: str) -> str:
        """Escape a value for a single-quoted JavaScript string literal
        inside an inline ``<script>`` block"""
        if not text:
            return ""

        return (text
                .replace("\\", "\\\\")
                .replace("'", "\\'")
                .replace("\"", "\\\"")
                .replace("\n", "\\n")
                .replace("\r", "\\r")
                .replace("<", "\\x3C")
                .replace("\u2028", "\\u2028")
                .replace("\u2029", "\\u2029"))


def dispatch_filename(course_title: str) -> str:
    """Download filename: non-alphanumerics of the title replaced by ``_``."""
    return f"{re.sub(r'[^A-Za-z0-9]', '_', course_title)}_dispatch.zip"


dispatch_service = DispatchPackageService()
