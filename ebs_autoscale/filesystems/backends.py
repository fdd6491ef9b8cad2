# -*- test-case-name: ebs_autoscale.test.test_filesystems -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Filesystem backend descriptions, and resolution of a configured backend
name into an ``IFilesystem`` provider.
"""

from pyrsistent import PClass, field, PVector, pvector
from twisted.python.reflect import namedAny

from .btrfs import btrfs_from_configuration
from .errors import BackendNotFound, InvalidBackend


class FilesystemBackend(PClass):
    """
    Represent one kind of filesystem we might be able to grow.

    :ivar unicode name: The name used to select this backend in
        configuration.
    :ivar filesystem_factory: Called with the mount point and a ``dict`` of
        backend specific options; returns an ``IFilesystem`` provider.
    """
    name = field(type=str, mandatory=True)
    filesystem_factory = field(mandatory=True)


_DEFAULT_BACKENDS = [
    FilesystemBackend(
        name=u"btrfs", filesystem_factory=btrfs_from_configuration,
    ),
]


class FilesystemLoader(PClass):
    """
    An immutable collection of known backends, passed explicitly to whatever
    needs to resolve a backend name.

    :ivar PVector builtin_backends: The backends shipped with ebs-autoscale.
    :ivar str module_attribute: The module attribute that third-party
        backends should declare.
    """
    builtin_backends = field(PVector, mandatory=True, factory=pvector)
    module_attribute = field(
        str, mandatory=True, initial="EBS_AUTOSCALE_FILESYSTEM")

    def __invariant__(self):
        for builtin in self.builtin_backends:
            if not isinstance(builtin, FilesystemBackend):
                return (
                    False,
                    "Builtin backends must be of `FilesystemBackend`, not "
                    "`{actual_type.__name__}`.".format(
                        actual_type=type(builtin),
                    )
                )
        return (True, "")

    def list(self):
        """
        :return: The built-in backends.
        :rtype: ``PVector`` of ``FilesystemBackend``.
        """
        return self.builtin_backends

    def add(self, backend):
        """
        :param FilesystemBackend backend: A backend to make available.

        :return: A new ``FilesystemLoader`` which also knows ``backend``.
            Backends with the same name are replaced.
        """
        kept = [b for b in self.builtin_backends if b.name != backend.name]
        return self.set(builtin_backends=pvector(kept).append(backend))

    def get(self, backend_name):
        """
        Find the backend in ``builtin_backends`` named ``backend_name``. If not
        found then an attempt is made to load it as a module describing a
        backend.

        :param unicode backend_name: The name of the backend.

        :raise BackendNotFound: If ``backend_name`` doesn't match any
            known backend.
        :raise InvalidBackend: If ``backend_name`` names a module that
            doesn't describe a backend.
        :return: The matching ``FilesystemBackend``.
        """
        for builtin in self.builtin_backends:
            if builtin.name == backend_name:
                return builtin

        try:
            backend_module = namedAny(backend_name)
        except (AttributeError, ValueError):
            raise BackendNotFound(backend_name)

        try:
            backend = getattr(backend_module, self.module_attribute)
        except AttributeError:
            raise InvalidBackend(
                backend_name,
                "`{}.{}` is not defined.".format(
                    backend_name, self.module_attribute),
            )

        if not isinstance(backend, FilesystemBackend):
            raise InvalidBackend(
                backend_name,
                "`{}.{}` is of type `{}`, not `FilesystemBackend`.".format(
                    backend_name, self.module_attribute,
                    type(backend).__name__,
                ),
            )

        return backend


backend_loader = FilesystemLoader(builtin_backends=_DEFAULT_BACKENDS)


def get_filesystem(loader, backend_name, mount_point, options):
    """
    Build the filesystem named in configuration.

    :param FilesystemLoader loader: The backends to choose from.
    :param unicode backend_name: The configured backend.
    :param unicode mount_point: The mount point of the filesystem.
    :param dict options: Backend specific configuration.

    :return: An ``IFilesystem`` provider.
    """
    backend = loader.get(backend_name)
    return backend.filesystem_factory(mount_point, dict(options))
