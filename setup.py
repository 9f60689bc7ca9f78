from setuptools import setup, find_packages


setup(
    name='torch_krylov',
    version='0.1.0',
    packages=find_packages(exclude=['tests', 'tests.*', 'examples', 'docs']),
    install_requires=[
        'torch>=1.13.0',
        'numpy',
        'scipy>=1.8'
    ],
    extras_require={
        'test':['pytest'],
        'docs':['sphinx', 'furo']
    }
)
