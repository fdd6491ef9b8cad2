# -*- test-case-name: ebs_autoscale.test.test_filesystems -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
A btrfs filesystem spanning every volume, grown with ``btrfs device add``.
"""

from subprocess import PIPE, STDOUT, Popen

import psutil

from pyrsistent import PClass, field
from twisted.python.filepath import FilePath
from zope.interface import implementer

from .._logging import COMMAND_RESULT, FILESYSTEM_COMMAND, FSTAB_ENTRY_ADDED
from .errors import FilesystemCommandError
from .interfaces import IFilesystem

FSTAB = FilePath(u"/etc/fstab")


def run_filesystem_command(command, device, mount_point):
    """
    Run a command which creates or grows a filesystem, capturing its
    standard output and standard error.

    :param list command: The argument list of the command.
    :param unicode device: The device being added to the filesystem.
    :param unicode mount_point: The mount point of the filesystem.

    :raise FilesystemCommandError: If the command cannot be started or exits
        with a non-zero status.

    :return unicode: The output of the command.
    """
    with FILESYSTEM_COMMAND(
            command=command, device=device, mount_point=mount_point):
        try:
            process = Popen(command, stdout=PIPE, stderr=STDOUT)
        except OSError as e:
            raise FilesystemCommandError(
                device, mount_point, command, None, str(e))
        with process.stdout:
            output = process.stdout.read().decode("utf-8", "replace")
        status = process.wait()
        COMMAND_RESULT(exit_status=status, output=output).write()
        if status:
            raise FilesystemCommandError(
                device, mount_point, command, status, output)
    return output


@implementer(IFilesystem)
class BtrfsFilesystem(PClass):
    """
    :ivar unicode path: The mount point.
    :ivar FilePath fstab: The file system table a new filesystem is
        recorded in so it is mounted at boot.
    :ivar run_command: Like ``run_filesystem_command``.
    :ivar disk_usage: Like ``psutil.disk_usage``.
    """
    path = field(type=str, mandatory=True)
    fstab = field(type=FilePath, initial=FSTAB, mandatory=True)
    run_command = field(
        initial=(lambda: run_filesystem_command), mandatory=True)
    disk_usage = field(initial=(lambda: psutil.disk_usage), mandatory=True)

    def mount_point(self):
        return self.path

    def create_filesystem(self, device):
        self.run_command(
            [u"mkfs.btrfs", u"-f", u"-d", u"single", device], device,
            self.path)
        self.run_command([u"mount", device, self.path], device, self.path)

        line = u"{}\t{}\tbtrfs\tdefaults\t0\t0\n".format(device, self.path)
        FSTAB_ENTRY_ADDED(fstab=self.fstab.path, line=line).write()
        with self.fstab.open("a") as f:
            f.write(line.encode("utf-8"))

    def grow_filesystem(self, device):
        self.run_command(
            [u"btrfs", u"device", u"add", device, self.path], device,
            self.path)
        self.run_command(
            [u"btrfs", u"balance", u"start", u"-m", self.path], device,
            self.path)

    def stat(self):
        usage = self.disk_usage(self.path)
        return usage.total, usage.used, usage.free


def btrfs_from_configuration(mount_point, options):
    """
    Build a ``BtrfsFilesystem``.

    :param unicode mount_point: Where the filesystem is mounted.
    :param dict options: Backend specific options; btrfs takes none.
    """
    return BtrfsFilesystem(path=mount_point)
