# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``ebs_autoscale.filesystems``.
"""

from collections import namedtuple

from eliot.testing import capture_logging, assertHasAction, assertHasMessage
from zope.interface.verify import verifyObject

from .._logging import COMMAND_RESULT, FILESYSTEM_COMMAND, FSTAB_ENTRY_ADDED
from ..filesystems import (
    BackendNotFound, FilesystemBackend, FilesystemCommandError,
    FilesystemLoader, IFilesystem, InvalidBackend, backend_loader,
    get_filesystem,
)
from ..filesystems.btrfs import (
    BtrfsFilesystem, btrfs_from_configuration, run_filesystem_command,
)
from ..filesystems.memory import MemoryFilesystem
from ..testtools import TestCase

MOUNT_POINT = u"/mnt/ebs-autoscale"
DEVICE = u"/dev/xvdba"

_DiskUsage = namedtuple("_DiskUsage", "total used free percent")


def memory_from_configuration(mount_point, options):
    return MemoryFilesystem(mount_point, **options)


# A third-party backend, as loaded by dotted module name.
EBS_AUTOSCALE_FILESYSTEM = FilesystemBackend(
    name=u"memory", filesystem_factory=memory_from_configuration,
)

NOT_A_BACKEND = object()


class RecordingRunner(object):
    """
    Record commands instead of running them, failing any whose first
    argument is in ``failing``.
    """
    def __init__(self, failing=()):
        self.commands = []
        self.failing = failing

    def __call__(self, command, device, mount_point):
        self.commands.append(command)
        if command[0] in self.failing:
            raise FilesystemCommandError(
                device, mount_point, command, 1, u"device is busy\n")
        return u""


def make_ifilesystem_tests(filesystem_factory):
    """
    Build a ``TestCase`` for verifying that an implementation of
    ``IFilesystem`` adheres to that interface.

    :param filesystem_factory: Called with ``test_case``; returns an
        ``IFilesystem`` mounted at ``MOUNT_POINT``.
    """
    class Tests(TestCase):
        def setUp(self):
            super(Tests, self).setUp()
            self.filesystem = filesystem_factory(test_case=self)

        def test_interface(self):
            """
            The filesystem provides ``IFilesystem``.
            """
            self.assertTrue(verifyObject(IFilesystem, self.filesystem))

        def test_mount_point(self):
            """
            ``mount_point`` returns the configured path.
            """
            self.assertEqual(MOUNT_POINT, self.filesystem.mount_point())

        def test_stat(self):
            """
            ``stat`` returns consistent integer sizes.
            """
            total, used, free = self.filesystem.stat()
            self.assertEqual(
                ([int] * 3, True),
                ([type(total), type(used), type(free)], used <= total),
            )

    return Tests


def btrfs_for_test(test_case):
    return BtrfsFilesystem(
        path=MOUNT_POINT,
        fstab=test_case.make_temporary_directory().child(u"fstab"),
        run_command=RecordingRunner(),
        disk_usage=lambda path: _DiskUsage(1000, 250, 750, 25.0),
    )


class BtrfsInterfaceTests(make_ifilesystem_tests(btrfs_for_test)):
    """
    ``IFilesystem`` tests for ``BtrfsFilesystem``.
    """


class MemoryInterfaceTests(make_ifilesystem_tests(
        lambda test_case: MemoryFilesystem(MOUNT_POINT, (1000, 250, 750)))):
    """
    ``IFilesystem`` tests for ``MemoryFilesystem``.
    """


class BtrfsFilesystemTests(TestCase):
    """
    Tests for ``BtrfsFilesystem``.
    """
    def setUp(self):
        super(BtrfsFilesystemTests, self).setUp()
        self.fstab = self.make_temporary_directory().child(u"fstab")
        self.fstab.setContent(b"LABEL=root\t/\text4\tdefaults\t0\t0\n")

    def filesystem(self, runner, disk_usage=None):
        return BtrfsFilesystem(
            path=MOUNT_POINT, fstab=self.fstab, run_command=runner,
            disk_usage=disk_usage or (lambda path: None),
        )

    def test_create(self):
        """
        ``create_filesystem`` makes a btrfs filesystem on the device and
        mounts it.
        """
        runner = RecordingRunner()
        self.filesystem(runner).create_filesystem(DEVICE)
        self.assertEqual(
            [[u"mkfs.btrfs", u"-f", u"-d", u"single", DEVICE],
             [u"mount", DEVICE, MOUNT_POINT]],
            runner.commands,
        )

    @capture_logging(assertHasMessage, FSTAB_ENTRY_ADDED, {
        u"line": u"/dev/xvdba\t/mnt/ebs-autoscale\tbtrfs\tdefaults\t0\t0\n",
    })
    def test_create_fstab(self, logger):
        """
        ``create_filesystem`` appends the new filesystem to the file system
        table, leaving existing entries alone.
        """
        self.filesystem(RecordingRunner()).create_filesystem(DEVICE)
        self.assertEqual(
            b"LABEL=root\t/\text4\tdefaults\t0\t0\n"
            b"/dev/xvdba\t/mnt/ebs-autoscale\tbtrfs\tdefaults\t0\t0\n",
            self.fstab.getContent(),
        )

    def test_create_fails(self):
        """
        If a command fails ``FilesystemCommandError`` is raised and nothing
        is written to the file system table.
        """
        runner = RecordingRunner(failing=[u"mkfs.btrfs"])
        error = self.assertRaises(
            FilesystemCommandError,
            self.filesystem(runner).create_filesystem, DEVICE,
        )
        self.assertEqual(
            (DEVICE, MOUNT_POINT, 1,
             b"LABEL=root\t/\text4\tdefaults\t0\t0\n"),
            (error.device, error.mount_point, len(runner.commands),
             self.fstab.getContent()),
        )

    def test_grow(self):
        """
        ``grow_filesystem`` adds the device to the filesystem and rebalances
        its metadata.
        """
        runner = RecordingRunner()
        self.filesystem(runner).grow_filesystem(DEVICE)
        self.assertEqual(
            [[u"btrfs", u"device", u"add", DEVICE, MOUNT_POINT],
             [u"btrfs", u"balance", u"start", u"-m", MOUNT_POINT]],
            runner.commands,
        )

    def test_grow_fails(self):
        """
        If adding the device fails ``FilesystemCommandError`` is raised and
        the metadata is not rebalanced.
        """
        runner = RecordingRunner(failing=[u"btrfs"])
        error = self.assertRaises(
            FilesystemCommandError,
            self.filesystem(runner).grow_filesystem, DEVICE,
        )
        self.assertEqual(
            (DEVICE, MOUNT_POINT,
             [u"btrfs", u"device", u"add", DEVICE, MOUNT_POINT], 1,
             u"device is busy\n", 1),
            (error.device, error.mount_point, error.command, error.status,
             error.output, len(runner.commands)),
        )

    def test_stat(self):
        """
        ``stat`` reports the usage of the mount point.
        """
        paths = []

        def disk_usage(path):
            paths.append(path)
            return _DiskUsage(1000, 250, 750, 25.0)
        self.assertEqual(
            ((1000, 250, 750), [MOUNT_POINT]),
            (self.filesystem(RecordingRunner(), disk_usage).stat(), paths),
        )

    def test_from_configuration(self):
        """
        ``btrfs_from_configuration`` builds a ``BtrfsFilesystem`` at the
        mount point.
        """
        filesystem = btrfs_from_configuration(MOUNT_POINT, {})
        self.assertEqual(
            (BtrfsFilesystem, MOUNT_POINT),
            (type(filesystem), filesystem.mount_point()),
        )


class RunFilesystemCommandTests(TestCase):
    """
    Tests for ``run_filesystem_command``.
    """
    @capture_logging(
        assertHasAction, FILESYSTEM_COMMAND, True,
        {u"command": [u"echo", u"hello"], u"device": DEVICE,
         u"mount_point": MOUNT_POINT},
    )
    def test_output(self, logger):
        """
        The output of the command is returned.
        """
        self.assertEqual(
            u"hello\n",
            run_filesystem_command([u"echo", u"hello"], DEVICE, MOUNT_POINT),
        )

    @capture_logging(assertHasMessage, COMMAND_RESULT, {
        u"exit_status": 0, u"output": u"oops\n",
    })
    def test_stderr(self, logger):
        """
        Standard error is captured and logged along with standard output.
        """
        self.assertEqual(
            u"oops\n",
            run_filesystem_command(
                [u"sh", u"-c", u"echo oops >&2"], DEVICE, MOUNT_POINT),
        )

    @capture_logging(assertHasAction, FILESYSTEM_COMMAND, False)
    def test_failure(self, logger):
        """
        A non-zero exit status raises ``FilesystemCommandError`` naming the
        device, mount point and command, and including the output.
        """
        command = [u"sh", u"-c", u"echo device busy; exit 3"]
        error = self.assertRaises(
            FilesystemCommandError,
            run_filesystem_command, command, DEVICE, MOUNT_POINT,
        )
        self.assertEqual(
            (DEVICE, MOUNT_POINT, command, 3, u"device busy\n", True),
            (error.device, error.mount_point, error.command, error.status,
             error.output, u"    |device busy" in str(error)),
        )

    @capture_logging(None)
    def test_not_found(self, logger):
        """
        A command which cannot be started raises ``FilesystemCommandError``
        without an exit status.
        """
        error = self.assertRaises(
            FilesystemCommandError,
            run_filesystem_command,
            [u"ebs-autoscale-no-such-command"], DEVICE, MOUNT_POINT,
        )
        self.assertEqual(
            (None, True),
            (error.status, u"could not be run" in str(error)),
        )


class FilesystemLoaderTests(TestCase):
    """
    Tests for ``FilesystemLoader``.
    """
    def test_builtin(self):
        """
        btrfs is built in.
        """
        self.assertEqual(
            [u"btrfs"], [backend.name for backend in backend_loader.list()])

    def test_get_builtin(self):
        """
        ``get`` returns a built-in backend by name.
        """
        self.assertEqual(
            btrfs_from_configuration,
            backend_loader.get(u"btrfs").filesystem_factory,
        )

    def test_invariant(self):
        """
        Only ``FilesystemBackend`` instances may be built in.
        """
        self.assertRaises(
            Exception, FilesystemLoader, builtin_backends=[object()])

    def test_add(self):
        """
        ``add`` returns a new loader which also knows the backend, leaving the
        original unchanged.
        """
        loader = backend_loader.add(EBS_AUTOSCALE_FILESYSTEM)
        self.assertEqual(
            ([u"btrfs", u"memory"], [u"btrfs"], EBS_AUTOSCALE_FILESYSTEM),
            ([b.name for b in loader.list()],
             [b.name for b in backend_loader.list()],
             loader.get(u"memory")),
        )

    def test_add_replaces(self):
        """
        Adding a backend with the name of a known one replaces it.
        """
        replacement = FilesystemBackend(
            name=u"btrfs", filesystem_factory=memory_from_configuration)
        loader = backend_loader.add(replacement)
        self.assertEqual(
            ([replacement], replacement),
            (list(loader.list()), loader.get(u"btrfs")),
        )

    def test_get_module(self):
        """
        A backend not built in is loaded from the module attribute of the
        named module.
        """
        self.assertEqual(
            EBS_AUTOSCALE_FILESYSTEM, backend_loader.get(__name__))

    def test_not_found(self):
        """
        A name which is neither built in nor a module raises
        ``BackendNotFound``.
        """
        for name in (u"zfs", u"ebs_autoscale.nonexistent"):
            error = self.assertRaises(
                BackendNotFound, backend_loader.get, name)
            self.assertEqual(name, error.backend_name)

    def test_missing_attribute(self):
        """
        A module without the backend attribute raises ``InvalidBackend``.
        """
        error = self.assertRaises(
            InvalidBackend, backend_loader.get, u"ebs_autoscale.test")
        self.assertIn(u"EBS_AUTOSCALE_FILESYSTEM", error.reason)

    def test_wrong_type(self):
        """
        A module attribute which is not a ``FilesystemBackend`` raises
        ``InvalidBackend``.
        """
        loader = backend_loader.set(module_attribute="NOT_A_BACKEND")
        error = self.assertRaises(InvalidBackend, loader.get, __name__)
        self.assertIn(u"not `FilesystemBackend`", error.reason)


class GetFilesystemTests(TestCase):
    """
    Tests for ``get_filesystem``.
    """
    def test_builtin(self):
        """
        The configured built-in backend builds the filesystem.
        """
        filesystem = get_filesystem(
            backend_loader, u"btrfs", MOUNT_POINT, {})
        self.assertEqual(
            (BtrfsFilesystem, MOUNT_POINT),
            (type(filesystem), filesystem.mount_point()),
        )

    def test_options(self):
        """
        Backend specific options are passed to the factory.
        """
        filesystem = get_filesystem(
            backend_loader, __name__, u"/scratch",
            {u"usage": (10, 5, 5)},
        )
        self.assertEqual(
            (u"/scratch", (10, 5, 5)),
            (filesystem.mount_point(), filesystem.stat()),
        )

    def test_unknown(self):
        """
        An unknown backend raises ``BackendNotFound``.
        """
        self.assertRaises(
            BackendNotFound,
            get_filesystem, backend_loader, u"zfs", MOUNT_POINT, {},
        )
