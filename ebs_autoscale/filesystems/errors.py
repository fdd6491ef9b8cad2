# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Errors raised by filesystem backends.
"""


class FilesystemCommandError(Exception):
    """
    A command run to create or grow a filesystem failed.

    :ivar unicode device: The device being added to the filesystem.
    :ivar unicode mount_point: The mount point of the filesystem.
    :ivar list command: The argument list of the command.
    :ivar status: The exit status of the command, or ``None`` if it could
        not be started.
    :ivar unicode output: The combined output of the command, or why it
        could not be started.
    """
    def __init__(self, device, mount_point, command, status, output):
        Exception.__init__(self, device, mount_point, command, status, output)
        self.device = device
        self.mount_point = mount_point
        self.command = command
        self.status = status
        self.output = output

    def __str__(self):
        if self.status is None:
            outcome = u"could not be run"
        else:
            outcome = u"exited with status {}".format(self.status)
        lines = u"\n".join(
            u"    |" + line for line in self.output.splitlines())
        return u"{} ({} on {}) {}:\n{}".format(
            u" ".join(self.command), self.device, self.mount_point, outcome,
            lines,
        )


class BackendNotFound(Exception):
    """
    A filesystem backend with the given name was not found.

    :ivar unicode backend_name: Name of the backend looked for.
    """
    def __init__(self, backend_name):
        Exception.__init__(self, backend_name)
        self.backend_name = backend_name

    def __str__(self):
        return (
            "'{!s}' is neither a built-in filesystem backend nor a 3rd party "
            "module.".format(self.backend_name)
        )


class InvalidBackend(Exception):
    """
    A module with the given backend name was found, but doesn't provide a
    valid filesystem backend.

    :ivar unicode backend_name: Name of the module.
    :ivar unicode reason: What is wrong with it.
    """
    def __init__(self, backend_name, reason):
        Exception.__init__(self, backend_name, reason)
        self.backend_name = backend_name
        self.reason = reason

    def __str__(self):
        return "The 3rd party backend '{!s}' is invalid: {}".format(
            self.backend_name, self.reason)
