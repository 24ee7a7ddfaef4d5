# Copyright 2018 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Package Setup script for Feature Statistics."""
import os

from setuptools import find_packages
from setuptools import setup


def _make_test_requirements():
  return ['pytest>=7']


def _make_all_extra_requirements():
  return _make_test_requirements()


def select_constraint(default, nightly=None, git_master=None):
  """Select dependency constraint based on TFX_DEPENDENCY_SELECTOR env var."""
  selector = os.environ.get('TFX_DEPENDENCY_SELECTOR')
  if selector == 'UNCONSTRAINED':
    return ''
  elif selector == 'NIGHTLY' and nightly is not None:
    return nightly
  elif selector == 'GIT_MASTER' and git_master is not None:
    return git_master
  else:
    return default


# Get version from version module.
with open('feature_stats/version.py') as fp:
  globals_dict = {}
  exec(fp.read(), globals_dict)  # pylint: disable=exec-used
__version__ = globals_dict['__version__']

# Get the long description from the README file.
with open('README.md') as fp:
  _LONG_DESCRIPTION = fp.read()

setup(
    name='feature-stats',
    version=__version__,
    license='Apache 2.0',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
        'Topic :: Scientific/Engineering',
        'Topic :: Scientific/Engineering :: Mathematics',
        'Topic :: Software Development',
        'Topic :: Software Development :: Libraries',
        'Topic :: Software Development :: Libraries :: Python Modules',
    ],
    namespace_packages=[],
    install_requires=[
        'absl-py>=0.9,<3',
        'apache-beam>=2.50,<3',
        'joblib>=1.0',  # Dependency for multi-processing.
        'numpy>=1.22',
        'pandas>=1.4',
        'protobuf>=4.25',
        'pyarrow>=10',
        'tensorflow-metadata' + select_constraint(
            default='>=1.16',
            nightly='>=1.17.0.dev',
            git_master='@git+https://github.com/tensorflow/metadata@master'),
        'tfx-bsl' + select_constraint(
            default='>=1.16,<2',
            nightly='>=1.17.0.dev',
            git_master='@git+https://github.com/tensorflow/tfx-bsl@master'),
    ],
    extras_require={
        'test': _make_test_requirements(),
        'all': _make_all_extra_requirements(),
    },
    python_requires='>=3.9,<4',
    packages=find_packages(include=['feature_stats', 'feature_stats.*']),
    include_package_data=True,
    zip_safe=False,
    description='Single-pass, mergeable feature statistics for datasets.',
    long_description=_LONG_DESCRIPTION,
    long_description_content_type='text/markdown',
    keywords='feature statistics histograms quantiles beam',
    requires=[])
