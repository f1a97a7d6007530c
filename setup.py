# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""
StyleNet build configuration.

Pure Python; the GPU path comes from CuPy rather than a compiled
extension, so there is nothing to build.

Build
-----
    pip install -e .                          # editable install
    pip install -e .[dev]                     # + pytest, pytest-benchmark
    pip install -e .[cuda]                    # + CuPy for the cuda backend
    python setup.py bdist_wheel               # wheel
"""
import os

from setuptools import setup

# ── Package metadata ──
_readme = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'README.md')
try:
    with open(_readme, 'r', encoding='utf-8') as fh:
        long_description = fh.read()
except FileNotFoundError:
    long_description = ''

setup(
    name='stylenet',
    version='0.1.0',
    author='Pictofeed, LLC',
    author_email='engineering@pictofeed.io',
    description=(
        'Fast neural style transfer forward engine — im2col + GEMM '
        'convolutions on NumPy or CuPy with row-band tiling'
    ),
    long_description=long_description,
    long_description_content_type='text/markdown',
    url='https://github.com/pictofeed/stylenet',
    license='Proprietary',

    package_dir={
        'stylenet': '.',
        'stylenet.backends': 'backends',
        'stylenet.nn': 'nn',
        'stylenet.utils': 'utils',
    },
    packages=[
        'stylenet',
        'stylenet.backends',
        'stylenet.nn',
        'stylenet.utils',
    ],

    python_requires='>=3.10',
    install_requires=[
        'numpy>=1.24',
    ],
    extras_require={
        'cuda': [
            'cupy-cuda12x>=13.0',
        ],
        'dev': [
            'pytest>=7.0',
            'pytest-benchmark',
        ],
    },

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: Other/Proprietary License',
        'Operating System :: MacOS :: MacOS X',
        'Operating System :: POSIX :: Linux',
        'Operating System :: Microsoft :: Windows',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Image Processing',
    ],
    zip_safe=False,
)
