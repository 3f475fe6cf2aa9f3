from setuptools import find_namespace_packages, setup

if __name__ =='__main__':
    setup(
        name='cpdi2mpm',
        version='1.0',
        description='CPDI2 particle domain update for the Material Point Method',
        author='Krushang Gabani',
        author_email='krushang@buffalo.edu',
        keywords='Physics Simulation',
        packages=find_namespace_packages(include=['cpdi2mpm', 'cpdi2mpm.*']),
        python_requires='>=3.8',
        install_requires = [
            "numpy",
            "pyyaml",
            "scipy",
            "taichi",
        ],
        extras_require = {
            "test": [
                "pytest",
            ],
        },

    )
