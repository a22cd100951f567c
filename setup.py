from setuptools import setup, find_packages

package_name = 'iot_gateway'

setup(
    name=package_name,
    version='1.0.0',
    packages=find_packages(exclude=['tests']),
    python_requires='>=3.9',
    install_requires=[
        'fastapi>=0.104.0',
        'uvicorn>=0.24.0',
        'websockets>=12.0',
        'paho-mqtt>=2.0.0',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'httpx',
        ],
    },
    zip_safe=True,
    maintainer='Hasan Çoban',
    maintainer_email='hasancoban@std.iyte.edu.tr',
    description='ESP32 IoT gateway with WebSocket state sync and MQTT bridge',
    license='MIT',
    entry_points={
        'console_scripts': [
            'iot_gateway = iot_gateway.main:main',
            'iot_gateway_client = iot_gateway.client:main',
        ],
    },
)
