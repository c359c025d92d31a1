from setuptools import find_packages, setup

setup(
    name='sensorgate',
    version='1.0.0',
    description='Serial <-> MQTT gateway daemon for remote sensor units',
    author='isantolin',
    author_email='',
    packages=find_packages(include=['sensorgate', 'sensorgate.*']),
    python_requires='>=3.11',
    install_requires=[
        'aiomqtt',
        'construct',
        'msgspec',
        'pyserial',
        'pyserial-asyncio-fast',
        'tenacity',
        'transitions',
        'uvloop',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    entry_points={
        'console_scripts': [
            'sensorgate=sensorgate.daemon:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
