from setuptools import find_packages, setup

setup(
    name='credservice',
    packages=find_packages(exclude=['tests', 'tests.*']),
    version=open('VERSION').read().strip(),
    description='Jenkins credential service issuing repository scoped GitHub App '
                'tokens to Microsoft Entra ID users',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    python_requires='>=3.10',
    install_requires=[
        'figcan',
        'flask',
        'flask-marshmallow',
        'flask-cors',
        'marshmallow',
        'pyyaml',
        'PyJWT',
        'cryptography',
        'webargs',
        'python-dotenv',
        'typing-extensions',
        'flask-classful',
        'requests',
        'cachetools',
    ],
    extras_require={
        'test': [
            'pytest',
            'responses',
        ],
    },
    include_package_data=True
)
