# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Generate an ebs-autoscale package that can be installed on EC2 instances.
"""

from setuptools import setup, find_packages

with open("README.rst") as readme:
    description = readme.read()


def parse_requirements(requirements_file):
    """
    Parse a requirements file, skipping comments and blank lines.
    """
    requirements = []
    with open(requirements_file) as f:
        for line in f:
            line = line.split('#', 1)[0].strip()
            if line:
                requirements.append(line)
    return requirements

# The ``.in`` files leave the dependencies unpinned so that ebs-autoscale can
# be installed alongside other Python libraries.
install_requires = parse_requirements("requirements/ebs-autoscale.txt.in")
dev_requires = parse_requirements("requirements/ebs-autoscale-dev.txt.in")

setup(
    # This is the human-targetted name of the software being packaged.
    name="ebs-autoscale",
    # Keep in sync with ``ebs_autoscale.__version__``.
    version="0.1.0",
    # This identifies the creators of this software.  This is left symbolic for
    # ease of maintenance.
    author="ClusterHQ Team",
    author_email="support@clusterhq.com",
    url="https://clusterhq.com/",

    # A short identifier for the license under which the project is released.
    license="Apache License, Version 2.0",

    long_description=description,

    packages=find_packages(include=('ebs_autoscale', 'ebs_autoscale.*')),

    entry_points={
        # These are the command-line programs we want setuptools to install.
        'console_scripts': [
            'ebs-autoscale = ebs_autoscale.script:ebs_autoscale_main',
        ],
    },

    python_requires=">=3.8",

    install_requires=install_requires,

    extras_require={
        # This extra is for developers who need to work on ebs-autoscale
        # itself.
        "dev": dev_requires,
        "test": dev_requires,
    },

    # Some "trove classifiers" which are relevant.
    classifiers=[
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        ],
    )
