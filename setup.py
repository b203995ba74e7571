from setuptools import setup

setup(name='plurk-twister',
    version='0.1',
    description='Plurk comet client for Twisted Python',
    author='plurktwister contributors',
    license='MIT',
    platforms='any',
    packages=['plurktwister', 'plurktwister.scripts', 'plurktwister.test'],
    python_requires='>=3.8',
    install_requires=[
        'Twisted[tls]',
        'oauthlib',
        'simplejson',
    ],
    entry_points={
        'console_scripts': [
            'plurk-twister = plurktwister.scripts.plurk:run',
        ],
    },
)

# vim: set expandtab:
