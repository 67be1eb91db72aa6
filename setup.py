from setuptools import setup, find_packages

from vhistory import __version__
from vhistory import __description__
from vhistory import __doc__ as __long_description__

setup(
    name = 'vhistory',
    version = __version__,
    packages = find_packages(),
    python_requires = '>=3.7',
    install_requires = [
        'SQLAlchemy>=1.4',
    ],
    extras_require = {
        'test': ['pytest'],
    },

    # metadata for upload to PyPI
    description = __description__,
    long_description = __long_description__,
    license = "MIT",
    keywords = "versioning history audit restore sqlalchemy orm",
    zip_safe = False,
    classifiers = [
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Topic :: Software Development :: Libraries :: Python Modules'],
)
