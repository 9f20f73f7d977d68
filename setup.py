import os
from setuptools import setup

def read(fname):
    return open(os.path.join(os.path.dirname(__file__), fname)).read()

setup(
    name="arow",
    version="0.2",
    description=("Binary online classification with Adaptive Regularization of Weight Vectors"),
    author="Andreas Vlachos",
    license="BSD",
    long_description=read('README'),
    py_modules=['arow'],
    install_requires=['numpy'],
    extras_require={'test': ['pytest']},
    python_requires='>=3.6',
    entry_points={'console_scripts': ['arow-demo = arow:main']},
)
