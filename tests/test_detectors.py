import json
import unittest

from fakes import NEXT_PACKAGE, PRISMA_PACKAGE, VITE_PACKAGE, FakeHost

from vps_deployer.detectors import (
    GitHubProvider,
    NextJsApp,
    NoOrm,
    PrismaOrm,
    ViteApp,
    detect_app_framework,
    detect_git_provider,
    detect_orm,
    detect_package_manager,
    normalize_remote_url,
)
from vps_deployer.errors import (
    RemoteCommandError,
    UnsupportedAppTypeError,
    UnsupportedGitProviderError,
    ValidationError,
)

WORK = "/var/www/demo"


def _host_with(files: dict) -> FakeHost:
    host = FakeHost()
    host._mkdir(WORK)
    for name, content in files.items():
        host._put(f"{WORK}/{name}", content)
    return host


class PackageManagerTests(unittest.TestCase):
    def test_lockfile_decides(self) -> None:
        self.assertEqual(detect_package_manager(_host_with({"pnpm-lock.yaml": ""}), WORK).name, "pnpm")
        self.assertEqual(detect_package_manager(_host_with({"yarn.lock": ""}), WORK).name, "yarn")
        npm = detect_package_manager(_host_with({}), WORK)
        self.assertEqual(npm.name, "npm")
        self.assertEqual(npm.install_command(), "npm ci || npm install")
        self.assertEqual(npm.frozen_install_command(), "npm ci")
        self.assertEqual(npm.run_script("build"), "npm run build")

    def test_lockfiles_are_probed_through_the_runner(self) -> None:
        host = _host_with({})
        detect_package_manager(host, WORK)
        self.assertTrue(host.ran(r'^test -f .*pnpm-lock\.yaml.* && echo "exists" \|\| echo "missing"$'))
        self.assertTrue(host.ran(r'^test -f .*yarn\.lock.* && echo "exists" \|\| echo "missing"$'))

    def test_pnpm_prefers_frozen_lockfile(self) -> None:
        pnpm = detect_package_manager(_host_with({"pnpm-lock.yaml": ""}), WORK)
        self.assertEqual(pnpm.install_command(), "pnpm install --frozen-lockfile || pnpm install")
        self.assertEqual(pnpm.run_script("build"), "pnpm build")


class FrameworkTests(unittest.TestCase):
    def test_detects_next(self) -> None:
        framework = detect_app_framework(_host_with({"package.json": NEXT_PACKAGE}), WORK)
        self.assertIsInstance(framework, NextJsApp)
        options = framework.ecosystem_options("demo", WORK, 3001)
        self.assertEqual(options.script, "node_modules/next/dist/bin/next")
        self.assertEqual(options.args, "start")

    def test_vite_needs_a_config_file(self) -> None:
        host = _host_with({"package.json": VITE_PACKAGE, "vite.config.ts": "export default {}"})
        framework = detect_app_framework(host, WORK)
        self.assertIsInstance(framework, ViteApp)
        self.assertIn("_vps_deployer_server.js", framework.extra_files())

        with self.assertRaises(UnsupportedAppTypeError):
            detect_app_framework(_host_with({"package.json": VITE_PACKAGE}), WORK)

    def test_unknown_app_type(self) -> None:
        package = json.dumps({"dependencies": {"express": "4.0.0"}})
        with self.assertRaises(UnsupportedAppTypeError) as ctx:
            detect_app_framework(_host_with({"package.json": package}), WORK)
        self.assertIn("Next.js, Vite", str(ctx.exception))

    def test_missing_or_broken_manifest_is_unsupported(self) -> None:
        with self.assertRaises(UnsupportedAppTypeError):
            detect_app_framework(_host_with({"package.json": "{not json"}), WORK)
        with self.assertRaises(UnsupportedAppTypeError):
            detect_app_framework(_host_with({}), WORK)


class OrmTests(unittest.TestCase):
    def test_detection(self) -> None:
        self.assertIsInstance(detect_orm(_host_with({"package.json": PRISMA_PACKAGE}), WORK), PrismaOrm)
        self.assertIsInstance(detect_orm(_host_with({"prisma/schema.prisma": ""}), WORK), PrismaOrm)
        self.assertIsInstance(detect_orm(_host_with({"package.json": NEXT_PACKAGE}), WORK), NoOrm)

    def test_push_schema_requires_database_url(self) -> None:
        host = _host_with({"package.json": PRISMA_PACKAGE})
        orm = PrismaOrm()
        self.assertEqual(orm.push_schema(host, WORK, {}).message, "Generated (no DATABASE_URL)")
        self.assertFalse(any("db push" in c for c in host.node_commands))

        outcome = orm.push_schema(host, WORK, {"DATABASE_URL": "postgres://db"})
        self.assertTrue(outcome.ran)
        self.assertEqual(outcome.message, "Generated and database pushed")

    def test_push_failure_is_a_warning(self) -> None:
        host = _host_with({"package.json": PRISMA_PACKAGE})
        host.fail(r"prisma db push", output="P1001: Can't reach database")
        outcome = PrismaOrm().push_schema(host, WORK, {"DATABASE_URL": "postgres://db"})
        self.assertIn("db push warning", outcome.message)

    def test_generate_failure_raises(self) -> None:
        host = _host_with({"package.json": PRISMA_PACKAGE})
        host.fail(r"prisma generate", output="schema error")
        with self.assertRaises(RemoteCommandError) as ctx:
            PrismaOrm().generate(host, WORK)
        self.assertIn("Prisma generate failed", str(ctx.exception))

    def test_deploy_commands(self) -> None:
        self.assertEqual(PrismaOrm().deploy_commands(None), ("npx prisma generate", "npx prisma db push"))
        self.assertEqual(NoOrm().deploy_commands(None), ())


class GitProviderTests(unittest.TestCase):
    def test_validate_repo_url(self) -> None:
        provider = GitHubProvider()
        provider.validate_repo_url("https://github.com/alice/demo")
        provider.validate_repo_url("https://github.com/alice/demo.git")
        for bad in (
            "http://github.com/alice/demo",
            "https://github.com/alice",
            "https://github.com/alice/demo/tree/main",
            "https://github.com/alice/demo?x=1",
        ):
            with self.assertRaises(ValidationError, msg=bad):
                provider.validate_repo_url(bad)

    def test_parse_repo_strips_suffix(self) -> None:
        ref = GitHubProvider().parse_repo("https://github.com/alice/demo.git")
        self.assertEqual((ref.owner, ref.repo), ("alice", "demo"))

    def test_unsupported_host(self) -> None:
        with self.assertRaises(UnsupportedGitProviderError):
            detect_git_provider("https://gitlab.com/alice/demo")

    def test_normalize_remote_url(self) -> None:
        self.assertEqual(normalize_remote_url("git@github.com:alice/demo.git"), "https://github.com/alice/demo")
        self.assertEqual(normalize_remote_url("https://github.com/alice/demo.git"), "https://github.com/alice/demo")
        self.assertIsNone(normalize_remote_url(None))

    def test_clone_removes_credential_helper_on_failure(self) -> None:
        host = FakeHost()
        with self.assertRaises(RemoteCommandError):
            GitHubProvider().clone(host, "https://github.com/alice/missing", "main", "ghp_abc", "/var/www/x")
        self.assertFalse([path for path in host.files if "askpass" in path])
        self.assertEqual(len([m for m in host.modes.values() if m == "700"]), 1)


if __name__ == "__main__":
    unittest.main()
