from setuptools import setup, find_packages

setup(
    name="gidating-service-cdk",
    version="0.1.0",
    packages=find_packages(include=["infrastructure", "infrastructure.*", "deploy_tools", "deploy_tools.*"]),
    install_requires=[
        "aws-cdk-lib>=2.156.0",
        "constructs>=10.0.0",
        "boto3>=1.26.0",
        "click>=8.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "deploy-tools=deploy_tools.cli:main",
        ],
    },
    python_requires=">=3.9",
)
