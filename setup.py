#!/usr/bin/env python

from setuptools import setup, find_packages

setup(name='ReplSim',
		version='1.0',
		description='Replicated Concurrency Control and Recovery simulator',
		author='Brandon Reiss',
		author_email='blr246@nyu.edu',
		packages=find_packages(exclude=['tests', 'tests.*']),
		python_requires='>=3.11',
		scripts=[
			'bin/replsim',
			]
		)
